# mypy: disable-error-code="attr-defined"
# type: ignore
from unittest.mock import patch

from adprobe.classifier import ErrorCategory
from adprobe.config import Credential
from adprobe.outcomes import Status
from adprobe.service import DirectoryTester

from .base import ADMIN_DN, ALICE_DN, BASEDN, SSO_DN, FakeDirectoryTestCase


class TestDirectoryTester(FakeDirectoryTestCase):

    def setUp(self):
        super().setUp()
        self.tester = DirectoryTester(
            self.endpoint,
            self.credential,
            search_base=BASEDN,
            progress=self.messages.append,
        )

    def tearDown(self):
        self.tester.close()
        super().tearDown()

    def test_from_settings(self):
        tester = DirectoryTester.from_settings("default")
        self.assertEqual(tester.endpoint.url, "ldap://localhost:389")
        self.assertEqual(tester.search_base, BASEDN)
        self.assertEqual(tester.connection.credential.dn, ADMIN_DN)

    @patch("adprobe.connection.socket.create_connection")
    def test_port(self, create_connection):
        outcome = self.tester.test_port()
        self.assertIs(outcome.status, Status.CONNECTED)
        self.assertEqual(outcome.details["port"], 389)

    @patch("adprobe.connection.socket.create_connection")
    def test_port_closed(self, create_connection):
        create_connection.side_effect = ConnectionRefusedError("refused")
        outcome = self.tester.test_port()
        self.assertIs(outcome.status, Status.FAILED)
        self.assertIs(outcome.category, ErrorCategory.TRANSIENT_NETWORK)
        self.assertIn("Port 389 on localhost", outcome.message)

    def test_connectivity(self):
        outcome = self.tester.test_connectivity()
        self.assertIs(outcome.status, Status.CONNECTED)
        self.assertEqual(outcome.details["url"], "ldap://localhost:389")

    def test_bind(self):
        outcome = self.tester.test_bind()
        self.assertIs(outcome.status, Status.BOUND)
        self.assertEqual(outcome.dn, ADMIN_DN)

    def test_bad_bind(self):
        outcome = self.tester.test_bind(Credential(ADMIN_DN, "wrong"))
        self.assertIs(outcome.status, Status.FAILED)
        self.assertFalse(outcome.ok)
        self.assertIs(outcome.category, ErrorCategory.INVALID_CREDENTIALS)
        self.assertIn("Hint: Check the bind DN and password.", " ".join(self.messages))

    def test_bad_bind_keeps_working_bind(self):
        self.tester.test_bind()
        self.tester.test_bind(Credential(ADMIN_DN, "wrong"))
        self.assertEqual(self.tester.connection.credential.dn, ADMIN_DN)
        outcome = self.tester.provision_user("cn=dave,ou=staff,dc=example,dc=com", "dave")
        self.assertIs(outcome.status, Status.CREATED)

    def test_user_auth(self):
        outcome = self.tester.test_user_auth("alice", "alicepw")
        self.assertIs(outcome.status, Status.AUTHENTICATED)
        self.assertEqual(outcome.dn, ALICE_DN)

    def test_provision_then_move(self):
        outcome = self.tester.provision_user("cn=carol,ou=contractors,dc=example,dc=com", "carol")
        self.assertIs(outcome.status, Status.CREATED)
        self.assertFalse(outcome.enabled)
        outcome = self.tester.provision_user("cn=carol,ou=staff,dc=example,dc=com", "carol")
        self.assertIs(outcome.status, Status.ELSEWHERE)
        outcome = self.tester.move_entity(
            outcome.dn, "cn=carol,ou=staff,dc=example,dc=com"
        )
        self.assertIs(outcome.status, Status.MOVED)
        outcome = self.tester.provision_user("cn=carol,ou=staff,dc=example,dc=com", "carol")
        self.assertIs(outcome.status, Status.SAME_PLACE)

    def test_plaintext_password_update_fails(self):
        outcome = self.tester.update_user_password(ALICE_DN, "N3w-Secret!")
        self.assertIs(outcome.status, Status.FAILED)
        self.assertIs(outcome.category, ErrorCategory.POLICY_VIOLATION)
        self.assertIn("complexity", outcome.hint)

    def test_malformed_dn_fails(self):
        outcome = self.tester.move_entity(ALICE_DN, "not a dn")
        self.assertIs(outcome.status, Status.FAILED)
        self.assertIs(outcome.category, ErrorCategory.NO_SUCH_OBJECT)
        self.assertEqual(outcome.dn, "not a dn")

    def test_groups(self):
        outcome = self.tester.provision_group("cn=auditors,ou=groups,dc=example,dc=com")
        self.assertIs(outcome.status, Status.CREATED)
        outcome = self.tester.create_group("cn=auditors,ou=groups,dc=example,dc=com")
        self.assertIs(outcome.status, Status.SAME_PLACE)
        outcome = self.tester.set_sole_group_membership(
            ALICE_DN, "cn=auditors,ou=groups,dc=example,dc=com"
        )
        self.assertIs(outcome.status, Status.UPDATED)
        self.assertEqual(
            self.tester.groups.member_of(ALICE_DN),
            ["cn=auditors,ou=groups,dc=example,dc=com"],
        )

    def test_configure_group_for_sso_defaults_to_search_base(self):
        outcome = self.tester.configure_group_for_sso(SSO_DN)
        self.assertIs(outcome.status, Status.UPDATED)
        self.assertEqual(outcome.details["managed_by"], BASEDN)

    def test_set_primary_group(self):
        outcome = self.tester.set_primary_group(ALICE_DN, SSO_DN)
        self.assertIs(outcome.status, Status.UPDATED)

    def test_progress_reports_outcome(self):
        self.tester.provision_user(ALICE_DN, "alice")
        self.assertIn(f"Provision user: Same place: {ALICE_DN} (enabled)", self.messages)
