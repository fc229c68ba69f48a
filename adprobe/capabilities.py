"""
Root DSE reading and server flavor detection.

The connectivity test reports what kind of directory server answered, which
naming contexts it serves and which of the search controls we know about it
advertises.  All of that comes from a single base-scope read of the root DSE.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from adprobe import ldap

from .connection import ConnectionManager
from .exceptions import DirectoryError, LDAPConnectionError

logger = logging.getLogger("adprobe")

SORTING_OID = "1.2.840.113556.1.4.473"
PAGING_OID = "1.2.840.113556.1.4.319"
VLV_OID = "2.16.840.1.113730.3.4.9"

#: The root DSE attributes we ask for
ROOT_DSE_ATTRIBUTES: list[str] = [
    "vendorName",
    "vendorVersion",
    "forestFunctionality",
    "defaultNamingContext",
    "namingContexts",
    "dnsHostName",
    "supportedLDAPVersion",
    "supportedControl",
]


@dataclass(frozen=True)
class ServerInfo:
    """
    What the root DSE told us about the server.

    Attributes:
        flavor: ``"active_directory"``, ``"389"``, ``"openldap"``, the vendor
            name if we do not recognize it, or ``"unknown"``
        vendor: the ``vendorName`` value, if any
        naming_contexts: the DNs of the naming contexts the server holds
        default_naming_context: AD's ``defaultNamingContext``, if any
        dns_host_name: AD's ``dnsHostName``, if any
        ldap_versions: the supported LDAP protocol versions
        capabilities: ``{feature name: supported?}`` for the controls we know

    """

    flavor: str = "unknown"
    vendor: str | None = None
    naming_contexts: list[str] = field(default_factory=list)
    default_naming_context: str | None = None
    dns_host_name: str | None = None
    ldap_versions: list[int] = field(default_factory=list)
    capabilities: dict[str, bool] = field(default_factory=dict)

    @property
    def is_active_directory(self) -> bool:
        return self.flavor == "active_directory"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _first(attrs: dict[str, list[bytes]], name: str) -> str | None:
    values = attrs.get(name, [])
    if not values:
        return None
    return values[0].decode("utf-8", errors="ignore")


def _all(attrs: dict[str, list[bytes]], name: str) -> list[str]:
    return [value.decode("utf-8", errors="ignore") for value in attrs.get(name, [])]


def detect_flavor(root_dse: dict[str, list[bytes]]) -> str:
    """
    Work out what kind of server produced ``root_dse``.

    Active Directory is recognized by ``forestFunctionality``, which nothing
    else publishes.  The others are recognized by ``vendorName``.

    Args:
        root_dse: the raw root DSE attributes

    Returns:
        The server flavor.

    """
    if "forestFunctionality" in root_dse:
        return "active_directory"
    vendor_name = _first(root_dse, "vendorName")
    if not vendor_name:
        return "unknown"
    if any(
        name in vendor_name
        for name in ("Fedora Project", "Red Hat", "Oracle", "ForgeRock", "389")
    ):
        return "389"
    if "OpenLDAP Foundation" in vendor_name:
        return "openldap"
    return vendor_name


def parse_root_dse(root_dse: dict[str, list[bytes]]) -> ServerInfo:
    control_oids = set(_all(root_dse, "supportedControl"))
    return ServerInfo(
        flavor=detect_flavor(root_dse),
        vendor=_first(root_dse, "vendorName"),
        naming_contexts=_all(root_dse, "namingContexts"),
        default_naming_context=_first(root_dse, "defaultNamingContext"),
        dns_host_name=_first(root_dse, "dnsHostName"),
        ldap_versions=[int(v) for v in _all(root_dse, "supportedLDAPVersion") if v.isdigit()],
        capabilities={
            "server-side sorting": SORTING_OID in control_oids,
            "paged results": PAGING_OID in control_oids,
            "virtual list view": VLV_OID in control_oids,
        },
    )


def read_server_info(manager: ConnectionManager) -> ServerInfo:
    """
    Read the root DSE through ``manager`` and describe the server.

    Servers that refuse to show their root DSE (some do, to anonymous
    clients) give a :py:class:`ServerInfo` with everything unknown: the
    connection evidently works, which is all a connectivity test needs.

    Args:
        manager: the connection to use

    Raises:
        LDAPConnectionError: the server could not be reached

    Returns:
        What we learned about the server.

    """
    try:
        result = manager.search(
            "",
            ldap.SCOPE_BASE,  # type: ignore[attr-defined]
            "(objectClass=*)",
            ROOT_DSE_ATTRIBUTES,
        )
    except LDAPConnectionError:
        raise
    except DirectoryError as e:
        logger.warning(
            "adprobe.capabilities.root-dse.unreadable url=%s error=%s",
            manager.endpoint.url,
            e,
        )
        return ServerInfo()
    if not result:
        return ServerInfo()
    info = parse_root_dse(result[0][1])
    logger.info(
        "adprobe.capabilities.detected url=%s flavor=%s",
        manager.endpoint.url,
        info.flavor,
    )
    return info
