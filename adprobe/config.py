"""
Server and credential configuration.

A :py:class:`DirectoryEndpoint` says where the server is and how to talk to it;
a :py:class:`Credential` says who to bind as.  Both are immutable and are
passed explicitly to every :py:class:`~adprobe.connection.ConnectionManager`,
so two managers in the same process can use different TLS policies.

Endpoints can also be built from the same kind of server dictionary used in
``settings.LDAP_SERVERS``::

    LDAP_SERVERS = {
        "default": {
            "basedn": "DC=corp,DC=example",
            "url": "ldaps://dc1.corp.example:636",
            "user": "CN=svc-ldap,CN=Users,DC=corp,DC=example",
            "password": "secret",
            "tls_verify": "always",
            "timeout": 5.0,
        }
    }
"""

from enum import Enum
from pathlib import Path
from typing import Any, NamedTuple

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldapurl import LDAPUrl

#: Default port for plaintext and STARTTLS connections
LDAP_PORT = 389
#: Default port for LDAP over TLS
LDAPS_PORT = 636
#: Default timeout for dialing and for each operation, in seconds
DEFAULT_TIMEOUT = 5.0


class TransportSecurity(Enum):
    PLAIN = "plain"
    TLS = "tls"
    STARTTLS = "starttls"


class CertificatePolicy(Enum):
    VERIFY = "verify"
    #: Debug escape hatch: accept any certificate.  Never the default.
    SKIP = "skip"


class DirectoryEndpoint(NamedTuple):
    """
    Where and how to connect to a directory server.

    Attributes:
        host: the server host name or address
        port: the TCP port, or ``None`` for the default for ``security``
        security: plaintext, LDAP over TLS, or STARTTLS
        certificate_policy: whether to verify the server certificate
        timeout: dial and operation timeout, in seconds
        ca_certfile: path to a PEM file of CA certificates to trust
        follow_referrals: whether python-ldap should chase referrals

    """

    host: str
    port: int | None = None
    security: TransportSecurity = TransportSecurity.PLAIN
    certificate_policy: CertificatePolicy = CertificatePolicy.VERIFY
    timeout: float = DEFAULT_TIMEOUT
    ca_certfile: str | None = None
    follow_referrals: bool = False

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        if self.security is TransportSecurity.TLS:
            return LDAPS_PORT
        return LDAP_PORT

    @property
    def is_secure(self) -> bool:
        """``True`` if traffic on this endpoint is encrypted."""
        return self.security is not TransportSecurity.PLAIN

    @property
    def url(self) -> str:
        scheme = "ldaps" if self.security is TransportSecurity.TLS else "ldap"
        host = self.host
        if ":" in host and not host.startswith("["):
            # IPv6 literal
            host = f"[{host}]"
        return f"{scheme}://{host}:{self.effective_port}"

    def __str__(self) -> str:
        return self.url

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "DirectoryEndpoint":
        """
        Build an endpoint from a server configuration dictionary.

        Recognized keys: ``url`` (required), ``use_starttls``, ``tls_verify``
        (``"always"`` or ``"never"``), ``tls_ca_certfile``, ``timeout`` and
        ``follow_referrals``.

        Args:
            config: the server configuration

        Raises:
            ImproperlyConfigured: a key is missing or has a bad value

        Returns:
            The endpoint.

        """
        try:
            url = LDAPUrl(config["url"])
        except KeyError as e:
            msg = "LDAP server configuration has no 'url' key"
            raise ImproperlyConfigured(msg) from e
        except ValueError as e:
            msg = f"Invalid LDAP url: {config['url']}"
            raise ImproperlyConfigured(msg) from e
        if url.urlscheme == "ldaps":
            security = TransportSecurity.TLS
        elif url.urlscheme == "ldap":
            security = TransportSecurity.PLAIN
            if config.get("use_starttls", False):
                security = TransportSecurity.STARTTLS
        else:
            msg = f"Unsupported LDAP url scheme: {url.urlscheme}"
            raise ImproperlyConfigured(msg)
        host, _, port = url.hostport.rpartition(":")
        if not host or not port.isdigit():
            # no port in the url
            host, port = url.hostport, ""
        host = host.strip("[]")
        if not host:
            msg = f"LDAP url has no host: {config['url']}"
            raise ImproperlyConfigured(msg)
        tls_verify = config.get("tls_verify", "always")
        if tls_verify == "always":
            policy = CertificatePolicy.VERIFY
        elif tls_verify == "never":
            policy = CertificatePolicy.SKIP
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ImproperlyConfigured(msg)
        ca_certfile = config.get("tls_ca_certfile", None)
        if ca_certfile and not Path(ca_certfile).is_file():
            msg = f"CA Certificate file does not exist or is not a file: {ca_certfile}"
            raise ImproperlyConfigured(msg)
        return cls(
            host=host,
            port=int(port) if port else None,
            security=security,
            certificate_policy=policy,
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
            ca_certfile=ca_certfile,
            follow_referrals=bool(config.get("follow_referrals", False)),
        )


class Credential(NamedTuple):
    """
    A bind DN and its password.  The empty credential means anonymous.
    """

    dn: str = ""
    password: str = ""

    @property
    def is_anonymous(self) -> bool:
        return not self.dn

    def __repr__(self) -> str:
        return f"Credential(dn={self.dn!r}, password={'***' if self.password else ''!r})"


ANONYMOUS = Credential()


def get_server_config(name: str = "default") -> dict[str, Any]:
    """
    Return the ``settings.LDAP_SERVERS[name]`` dictionary.

    Raises:
        ImproperlyConfigured: ``settings.LDAP_SERVERS`` or the key is missing

    """
    try:
        return settings.LDAP_SERVERS[name]
    except AttributeError as e:
        msg = "settings.LDAP_SERVERS does not exist!"
        raise ImproperlyConfigured(msg) from e
    except KeyError as e:
        msg = f"settings.LDAP_SERVERS has no key '{name}'"
        raise ImproperlyConfigured(msg) from e


def from_settings(name: str = "default") -> tuple[DirectoryEndpoint, Credential, str | None]:
    """
    Build the endpoint, credential and search base for the server called
    ``name`` in ``settings.LDAP_SERVERS``.

    Args:
        name: the key in ``settings.LDAP_SERVERS``

    Returns:
        A tuple of (endpoint, credential, basedn).  ``basedn`` is ``None`` if
        the configuration has no ``basedn`` key.

    """
    config = get_server_config(name)
    endpoint = DirectoryEndpoint.from_config(config)
    credential = Credential(config.get("user", "") or "", config.get("password", "") or "")
    return endpoint, credential, config.get("basedn", None)
