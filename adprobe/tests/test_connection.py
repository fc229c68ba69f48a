# mypy: disable-error-code="attr-defined"
# type: ignore
"""
Tests for ConnectionManager that need failure modes python-ldap-faker cannot
produce (dead sockets, TLS failures), so python-ldap is replaced with mocks.
"""

import unittest
from unittest.mock import MagicMock, call, patch

import ldap

from adprobe.classifier import ErrorCategory
from adprobe.config import (
    CertificatePolicy,
    Credential,
    DirectoryEndpoint,
    TransportSecurity,
)
from adprobe.connection import ConnectionManager
from adprobe.exceptions import AuthError, LDAPConnectionError, ProtocolError

ADMIN = Credential("cn=admin,dc=example,dc=com", "admin")


def server_down(info: str = "") -> ldap.SERVER_DOWN:
    details = {"result": -1, "desc": "Can't contact LDAP server"}
    if info:
        details["info"] = info
    return ldap.SERVER_DOWN(details)


class ConnectionTestCase(unittest.TestCase):

    def setUp(self):
        self.initialize_patcher = patch("adprobe.ldap.initialize")
        self.initialize = self.initialize_patcher.start()
        self.sleep_patcher = patch("adprobe.connection.time.sleep")
        self.sleep = self.sleep_patcher.start()
        self.ldap_object = MagicMock()
        self.ldap_object.search_s.return_value = []
        self.initialize.return_value = self.ldap_object
        self.messages = []

    def tearDown(self):
        self.initialize_patcher.stop()
        self.sleep_patcher.stop()

    def manager(self, endpoint=None, credential=ADMIN):
        return ConnectionManager(
            endpoint or DirectoryEndpoint("dc1.example.com"),
            credential,
            progress=self.messages.append,
        )


class TestDial(ConnectionTestCase):

    def test_dial_sets_options_and_binds(self):
        manager = self.manager()
        manager.dial()
        self.initialize.assert_called_once_with("ldap://dc1.example.com:389")
        self.ldap_object.set_option.assert_any_call(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)
        self.ldap_object.set_option.assert_any_call(ldap.OPT_REFERRALS, 0)
        self.ldap_object.set_option.assert_any_call(ldap.OPT_NETWORK_TIMEOUT, 5.0)
        self.ldap_object.simple_bind_s.assert_called_once_with(ADMIN.dn, ADMIN.password)
        self.ldap_object.start_tls_s.assert_not_called()
        self.assertTrue(manager.has_connection())

    def test_tls_verify(self):
        manager = self.manager(DirectoryEndpoint("dc1.example.com", security=TransportSecurity.TLS))
        manager.dial()
        self.initialize.assert_called_once_with("ldaps://dc1.example.com:636")
        self.ldap_object.set_option.assert_any_call(
            ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND
        )
        self.ldap_object.set_option.assert_any_call(ldap.OPT_X_TLS_NEWCTX, 0)

    def test_tls_skip_verify(self):
        manager = self.manager(
            DirectoryEndpoint(
                "dc1.example.com",
                security=TransportSecurity.TLS,
                certificate_policy=CertificatePolicy.SKIP,
            )
        )
        manager.dial()
        self.ldap_object.set_option.assert_any_call(
            ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER
        )

    def test_starttls(self):
        manager = self.manager(
            DirectoryEndpoint("dc1.example.com", security=TransportSecurity.STARTTLS)
        )
        manager.dial()
        self.ldap_object.start_tls_s.assert_called_once_with()

    def test_anonymous_dial_does_not_bind(self):
        manager = self.manager(credential=None)
        manager.dial()
        self.ldap_object.simple_bind_s.assert_not_called()

    def test_probe_answer_with_error_is_alive(self):
        self.ldap_object.search_s.side_effect = ldap.NO_SUCH_OBJECT(
            {"result": 32, "desc": "No such object"}
        )
        manager = self.manager()
        manager.dial()
        self.assertTrue(manager.has_connection())


class TestRetry(ConnectionTestCase):

    def test_transient_failures_retried_at_most_three_times(self):
        self.ldap_object.search_s.side_effect = server_down()
        manager = self.manager()
        with self.assertRaises(LDAPConnectionError) as cm:
            manager.search("dc=example,dc=com")
        self.assertIs(cm.exception.category, ErrorCategory.TRANSIENT_NETWORK)
        self.assertEqual(self.initialize.call_count, 3)
        self.assertEqual(self.sleep.call_args_list, [call(0.5), call(1.0)])
        self.assertFalse(manager.has_connection())

    def test_recovers_on_second_attempt(self):
        dead = MagicMock()
        dead.search_s.side_effect = server_down()
        self.initialize.side_effect = [dead, self.ldap_object]
        self.ldap_object.search_s.return_value = [
            ("cn=alice,dc=example,dc=com", {"cn": [b"alice"]}),
        ]
        manager = self.manager()
        results = manager.search("dc=example,dc=com", filterstr="(cn=alice)")
        self.assertEqual(results[0][0], "cn=alice,dc=example,dc=com")
        self.sleep.assert_called_once_with(0.5)
        self.assertTrue(any("reconnecting" in message for message in self.messages))

    def test_invalid_credentials_never_retried(self):
        self.ldap_object.simple_bind_s.side_effect = ldap.INVALID_CREDENTIALS(
            {"result": 49, "desc": "Invalid credentials"}
        )
        manager = self.manager(credential=Credential(ADMIN.dn, "wrong"))
        with self.assertRaises(AuthError):
            manager.dial()
        self.assertEqual(self.initialize.call_count, 1)
        self.sleep.assert_not_called()
        self.ldap_object.unbind_s.assert_called_once_with()

    def test_certificate_failure_not_retried(self):
        self.ldap_object.search_s.side_effect = server_down(
            "error:0A000086:SSL routines::certificate verify failed (self-signed certificate)"
        )
        manager = self.manager(DirectoryEndpoint("dc1.example.com", security=TransportSecurity.TLS))
        with self.assertRaises(LDAPConnectionError) as cm:
            manager.dial()
        self.assertIs(cm.exception.category, ErrorCategory.CERTIFICATE)
        self.assertIn("skip", cm.exception.hint)
        self.assertEqual(self.initialize.call_count, 1)
        self.sleep.assert_not_called()

    def test_non_transient_operation_error_not_retried(self):
        manager = self.manager()
        manager.dial()
        self.ldap_object.add_s.side_effect = ldap.ALREADY_EXISTS(
            {"result": 68, "desc": "Already exists"}
        )
        with self.assertRaises(ProtocolError) as cm:
            manager.add("cn=x,dc=example,dc=com", [("cn", [b"x"])])
        self.assertIs(cm.exception.category, ErrorCategory.ALREADY_EXISTS)
        self.assertEqual(self.ldap_object.add_s.call_count, 1)


class TestLiveness(ConnectionTestCase):

    def test_dead_connection_is_replaced_and_rebound(self):
        first = MagicMock()
        # the probe during dial works; the probe before the search does not
        first.search_s.side_effect = [[], server_down()]
        self.initialize.side_effect = [first, self.ldap_object]
        self.ldap_object.search_s.return_value = [
            ("cn=alice,dc=example,dc=com", {"cn": [b"alice"]}),
            (None, ["ldap://other.example.com/dc=other,dc=com"]),
        ]
        manager = self.manager()
        manager.dial()
        results = manager.search("dc=example,dc=com")
        self.assertEqual(results, [("cn=alice,dc=example,dc=com", {"cn": [b"alice"]})])
        self.ldap_object.simple_bind_s.assert_called_once_with(ADMIN.dn, ADMIN.password)
        self.sleep.assert_not_called()

    def test_ensure_live_reuses_healthy_connection(self):
        manager = self.manager()
        first = manager.ensure_live()
        second = manager.ensure_live()
        self.assertIs(first, second)
        self.assertEqual(self.initialize.call_count, 1)


class TestBindAndClose(ConnectionTestCase):

    def test_anonymous_bind_skips_bind_call(self):
        manager = self.manager(credential=None)
        manager.bind()
        self.initialize.assert_not_called()
        self.assertTrue(manager.credential.is_anonymous)

    def test_bind_remembers_credential(self):
        manager = self.manager(credential=None)
        other = Credential("cn=alice,dc=example,dc=com", "alicepw")
        manager.bind(other)
        self.assertEqual(manager.credential, other)
        self.ldap_object.simple_bind_s.assert_called_once_with(other.dn, other.password)

    def test_failed_bind_keeps_remembered_credential(self):
        self.ldap_object.simple_bind_s.side_effect = [
            None,
            ldap.INVALID_CREDENTIALS({"result": 49, "desc": "Invalid credentials"}),
            None,
        ]
        manager = self.manager()
        manager.dial()
        with self.assertRaises(AuthError):
            manager.bind(Credential(ADMIN.dn, "wrong"))
        self.assertEqual(manager.credential, ADMIN)
        self.assertFalse(manager.has_connection())
        manager.search("dc=example,dc=com")
        self.assertEqual(self.initialize.call_count, 2)
        self.assertEqual(
            self.ldap_object.simple_bind_s.call_args_list,
            [
                call(ADMIN.dn, ADMIN.password),
                call(ADMIN.dn, "wrong"),
                call(ADMIN.dn, ADMIN.password),
            ],
        )

    def test_close_is_idempotent(self):
        manager = self.manager()
        manager.dial()
        manager.close()
        manager.close()
        self.ldap_object.unbind_s.assert_called_once_with()
        self.assertFalse(manager.has_connection())

    def test_context_manager(self):
        with self.manager() as manager:
            manager.dial()
        self.ldap_object.unbind_s.assert_called_once_with()


class TestPortOpen(unittest.TestCase):

    @patch("adprobe.connection.socket.create_connection")
    def test_open(self, create_connection):
        manager = ConnectionManager(DirectoryEndpoint("dc1.example.com", port=3268, timeout=2.0))
        self.assertTrue(manager.port_open())
        create_connection.assert_called_once_with(("dc1.example.com", 3268), timeout=2.0)

    @patch("adprobe.connection.socket.create_connection")
    def test_closed(self, create_connection):
        create_connection.side_effect = ConnectionRefusedError("refused")
        manager = ConnectionManager(DirectoryEndpoint("dc1.example.com"))
        self.assertFalse(manager.port_open())
