"""
Active Directory schema conventions.

AD is picky about how some attributes are written: passwords must be sent in a
specific quoted UTF-16LE form, account state is a bit field, and group type is
a signed 32-bit bit field.  Everything that depends on those encodings lives
here.
"""

import ipaddress
import struct
from enum import IntFlag

from adprobe import dn as dnutil

USER_OBJECTCLASSES: list[bytes] = [b"top", b"person", b"organizationalPerson", b"user"]
GROUP_OBJECTCLASSES: list[bytes] = [b"top", b"group"]
CONTAINER_OBJECTCLASSES: list[bytes] = [b"top", b"container"]
OU_OBJECTCLASSES: list[bytes] = [b"top", b"organizationalUnit"]


class AccountControl(IntFlag):
    """
    The ``userAccountControl`` bits we care about.

    See https://learn.microsoft.com/en-us/troubleshoot/windows-server/active-directory/useraccountcontrol-manipulate-account-properties
    """

    ACCOUNTDISABLE = 0x0002
    PASSWD_NOTREQD = 0x0020
    NORMAL_ACCOUNT = 0x0200
    DONT_EXPIRE_PASSWORD = 0x10000


class GroupType(IntFlag):
    """The ``groupType`` bits."""

    GLOBAL = 0x00000002
    DOMAIN_LOCAL = 0x00000004
    UNIVERSAL = 0x00000008
    SECURITY_ENABLED = 0x80000000


#: An enabled account with a password: 512
ENABLED_ACCOUNT: int = int(AccountControl.NORMAL_ACCOUNT)
#: A disabled account with no password set: 514
DISABLED_ACCOUNT: int = int(AccountControl.NORMAL_ACCOUNT | AccountControl.ACCOUNTDISABLE)

#: The description ``configure_group_for_sso`` puts on authentication groups.
SSO_GROUP_DESCRIPTION = "LDAP Authentication Group"


def group_type_value(flags: GroupType) -> int:
    """
    Return ``flags`` the way AD stores ``groupType``: as a signed 32-bit
    integer.  A global security group is therefore ``-2147483646``, not
    ``2147483650``.
    """
    value = int(flags)
    if value & 0x80000000:
        value -= 1 << 32
    return value


#: Global security group: -2147483646
GLOBAL_SECURITY_GROUP: int = group_type_value(GroupType.GLOBAL | GroupType.SECURITY_ENABLED)


def encode_password(password: str) -> bytes:
    """
    Encode ``password`` for the ``unicodePwd`` attribute.

    AD wants the password wrapped in double quotes and encoded as UTF-16
    little endian with no byte order mark.  Anything else is either rejected
    or silently set to something other than what you meant.

    Args:
        password: the clear text password

    Returns:
        The bytes to send as the ``unicodePwd`` value.

    """
    return f'"{password}"'.encode("utf-16-le")


def decode_password(value: bytes) -> str:
    """Reverse :py:func:`encode_password`."""
    decoded = value.decode("utf-16-le")
    if len(decoded) < 2 or not (decoded[0] == decoded[-1] == '"'):  # noqa: PLR2004
        msg = "unicodePwd value is not quote-wrapped"
        raise ValueError(msg)
    return decoded[1:-1]


def account_control(enabled: bool) -> int:
    return ENABLED_ACCOUNT if enabled else DISABLED_ACCOUNT


def is_enabled(user_account_control: int) -> bool:
    return not user_account_control & AccountControl.ACCOUNTDISABLE


def sid_to_string(sid: bytes) -> str:
    """
    Render a binary ``objectSid`` in its ``S-1-5-21-...`` string form.

    The layout is: revision (1 byte), sub-authority count (1 byte), identifier
    authority (6 bytes, big endian), then the sub-authorities (4 bytes each,
    little endian).

    Args:
        sid: the raw ``objectSid`` value

    Raises:
        ValueError: ``sid`` is truncated

    Returns:
        The string form of the SID.

    """
    if len(sid) < 8:  # noqa: PLR2004
        msg = f"SID is too short: {len(sid)} bytes"
        raise ValueError(msg)
    revision = sid[0]
    count = sid[1]
    if len(sid) < 8 + 4 * count:
        msg = f"SID claims {count} sub-authorities but has {len(sid)} bytes"
        raise ValueError(msg)
    authority = struct.unpack(">Q", b"\x00\x00" + sid[2:8])[0]
    subs = struct.unpack(f"<{count}I", sid[8 : 8 + 4 * count])
    return "-".join(["S", str(revision), str(authority), *(str(s) for s in subs)])


def sid_rid(sid: bytes) -> int:
    """
    Return the relative identifier of a binary SID: its last sub-authority.
    This is what ``primaryGroupID`` holds.
    """
    return int(sid_to_string(sid).rsplit("-", 1)[1])


def infer_domain(target_dn: str, host: str | None = None) -> str | None:
    """
    Work out the DNS domain for a user principal name.

    The ``DC=`` components of ``target_dn`` win.  If there are none we fall
    back to ``host``, as long as it is a dotted DNS name and not an IP address.
    """
    domain = dnutil.domain_name(target_dn)
    if domain:
        return domain
    if host and "." in host:
        try:
            ipaddress.ip_address(host)
        except ValueError:
            return host.lower()
    return None


def user_principal_name(account_name: str, target_dn: str, host: str | None = None) -> str | None:
    domain = infer_domain(target_dn, host)
    if domain is None:
        return None
    return f"{account_name}@{domain}"
