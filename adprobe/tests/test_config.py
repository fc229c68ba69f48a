# mypy: disable-error-code="attr-defined"
# type: ignore
import tempfile
import unittest
from unittest.mock import patch

from django.core.exceptions import ImproperlyConfigured

from adprobe import config
from adprobe.config import (
    CertificatePolicy,
    Credential,
    DirectoryEndpoint,
    TransportSecurity,
)

from . import base  # noqa: F401  configures Django settings


class TestDirectoryEndpoint(unittest.TestCase):

    def test_defaults(self):
        endpoint = DirectoryEndpoint("dc1.corp.example")
        self.assertEqual(endpoint.effective_port, 389)
        self.assertIs(endpoint.certificate_policy, CertificatePolicy.VERIFY)
        self.assertEqual(endpoint.timeout, 5.0)
        self.assertFalse(endpoint.is_secure)
        self.assertEqual(endpoint.url, "ldap://dc1.corp.example:389")

    def test_tls_defaults_to_636(self):
        endpoint = DirectoryEndpoint("dc1.corp.example", security=TransportSecurity.TLS)
        self.assertEqual(endpoint.url, "ldaps://dc1.corp.example:636")
        self.assertTrue(endpoint.is_secure)

    def test_starttls_uses_ldap_scheme(self):
        endpoint = DirectoryEndpoint("dc1", security=TransportSecurity.STARTTLS)
        self.assertEqual(endpoint.url, "ldap://dc1:389")
        self.assertTrue(endpoint.is_secure)

    def test_explicit_port_and_ipv6(self):
        self.assertEqual(DirectoryEndpoint("fe80::1", port=1389).url, "ldap://[fe80::1]:1389")

    def test_from_config(self):
        endpoint = DirectoryEndpoint.from_config(
            {"url": "ldaps://dc1.corp.example", "tls_verify": "never", "timeout": 10}
        )
        self.assertEqual(endpoint.host, "dc1.corp.example")
        self.assertIsNone(endpoint.port)
        self.assertEqual(endpoint.effective_port, 636)
        self.assertIs(endpoint.security, TransportSecurity.TLS)
        self.assertIs(endpoint.certificate_policy, CertificatePolicy.SKIP)
        self.assertEqual(endpoint.timeout, 10.0)

    def test_from_config_starttls_with_port(self):
        endpoint = DirectoryEndpoint.from_config(
            {"url": "ldap://dc1.corp.example:3268", "use_starttls": True}
        )
        self.assertEqual(endpoint.port, 3268)
        self.assertIs(endpoint.security, TransportSecurity.STARTTLS)
        self.assertIs(endpoint.certificate_policy, CertificatePolicy.VERIFY)

    def test_from_config_errors(self):
        with self.assertRaises(ImproperlyConfigured):
            DirectoryEndpoint.from_config({})
        with self.assertRaises(ImproperlyConfigured):
            DirectoryEndpoint.from_config({"url": "http://dc1"})
        with self.assertRaises(ImproperlyConfigured):
            DirectoryEndpoint.from_config({"url": "ldap://dc1", "tls_verify": "sometimes"})
        with self.assertRaises(ImproperlyConfigured):
            DirectoryEndpoint.from_config(
                {"url": "ldap://dc1", "tls_ca_certfile": "/nonexistent/ca.pem"}
            )

    def test_from_config_ca_certfile(self):
        with tempfile.NamedTemporaryFile(suffix=".pem") as ca:
            endpoint = DirectoryEndpoint.from_config(
                {"url": "ldaps://dc1", "tls_ca_certfile": ca.name}
            )
            self.assertEqual(endpoint.ca_certfile, ca.name)


class TestCredential(unittest.TestCase):

    def test_anonymous(self):
        self.assertTrue(Credential().is_anonymous)
        self.assertTrue(config.ANONYMOUS.is_anonymous)
        self.assertFalse(Credential("cn=admin,dc=example,dc=com", "x").is_anonymous)

    def test_repr_hides_password(self):
        self.assertNotIn("hunter2", repr(Credential("cn=admin", "hunter2")))


class TestFromSettings(unittest.TestCase):

    def test_from_settings(self):
        endpoint, credential, basedn = config.from_settings("default")
        self.assertEqual(endpoint.url, "ldap://localhost:389")
        self.assertEqual(credential.dn, "cn=admin,dc=example,dc=com")
        self.assertEqual(credential.password, "admin")
        self.assertEqual(basedn, "dc=example,dc=com")

    def test_missing_key(self):
        with self.assertRaises(ImproperlyConfigured):
            config.from_settings("nope")

    def test_missing_setting(self):
        with patch("adprobe.config.settings", object()):
            with self.assertRaises(ImproperlyConfigured):
                config.get_server_config()
