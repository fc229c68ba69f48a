"""
Classification of LDAP failures.

python-ldap reports every server result code as its own exception class
(``ldap.INVALID_CREDENTIALS``, ``ldap.NO_SUCH_OBJECT``, ...) and client-side
transport problems as ``ldap.SERVER_DOWN``, ``ldap.CONNECT_ERROR`` and
``ldap.TIMEOUT``.  This module collapses them into the handful of categories
that decide what we do next: retry, fail, or tell the user how to fix their
input.

Active Directory packs more detail into the ``info`` field of the error than
the result code carries, e.g.::

    0000052D: SvcErr: DSID-031A1248, problem 5003 (WILL_NOT_PERFORM), data 0

for a password that fails the complexity policy, or::

    80090308: LdapErr: DSID-0C090447, comment: AcceptSecurityContext error, data 52e, v3839

for a bind with a bad password.  We look at both.
"""

import re
from enum import Enum
from typing import Any

from adprobe import ldap


class ErrorCategory(Enum):
    """The actionable categories every directory failure is sorted into."""

    INVALID_CREDENTIALS = "invalid_credentials"
    INSUFFICIENT_ACCESS = "insufficient_access"
    NO_SUCH_OBJECT = "no_such_object"
    ALREADY_EXISTS = "already_exists"
    POLICY_VIOLATION = "policy_violation"
    TRANSIENT_NETWORK = "transient_network"
    CERTIFICATE = "certificate"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self is ErrorCategory.TRANSIENT_NETWORK


#: Remediation hints shown alongside a failure of each category.
HINTS: dict[ErrorCategory, str] = {
    ErrorCategory.INVALID_CREDENTIALS: (
        "Check the bind DN and password. Make sure the DN is complete and the "
        "account is neither disabled nor locked out."
    ),
    ErrorCategory.INSUFFICIENT_ACCESS: (
        "The bind account does not have the rights needed for this operation. "
        "Use an account with write access to the target container."
    ),
    ErrorCategory.NO_SUCH_OBJECT: (
        "The object or one of its parent containers does not exist. Check the "
        "DN and the search base."
    ),
    ErrorCategory.ALREADY_EXISTS: (
        "An entry with this name already exists. Search for it and decide "
        "whether to reuse or move it."
    ),
    ErrorCategory.POLICY_VIOLATION: (
        "The server rejected the value because of its policy. Check the "
        "password complexity requirements, and use an encrypted (TLS) "
        "connection when setting passwords."
    ),
    ErrorCategory.TRANSIENT_NETWORK: (
        "The server could not be reached. Check the host name, the port, "
        "firewalls and VPN connectivity, then retry."
    ),
    ErrorCategory.CERTIFICATE: (
        "The server certificate could not be verified. Install the issuing CA "
        "certificate, or enable the debug option to skip certificate "
        "verification for testing."
    ),
    ErrorCategory.UNKNOWN: "The server refused the operation; see the message for details.",
}

#: Ordered (exception class, category) pairs.  The first match wins, so more
#: specific classes come before the more general ones.
EXCEPTION_CATEGORIES: list[tuple[type[Exception], ErrorCategory]] = [
    (ldap.INVALID_CREDENTIALS, ErrorCategory.INVALID_CREDENTIALS),  # type: ignore[attr-defined]
    (ldap.INAPPROPRIATE_AUTH, ErrorCategory.INVALID_CREDENTIALS),  # type: ignore[attr-defined]
    (ldap.INSUFFICIENT_ACCESS, ErrorCategory.INSUFFICIENT_ACCESS),  # type: ignore[attr-defined]
    (ldap.NO_SUCH_OBJECT, ErrorCategory.NO_SUCH_OBJECT),  # type: ignore[attr-defined]
    (ldap.NO_SUCH_ATTRIBUTE, ErrorCategory.NO_SUCH_OBJECT),  # type: ignore[attr-defined]
    (ldap.ALREADY_EXISTS, ErrorCategory.ALREADY_EXISTS),  # type: ignore[attr-defined]
    (ldap.TYPE_OR_VALUE_EXISTS, ErrorCategory.ALREADY_EXISTS),  # type: ignore[attr-defined]
    (ldap.CONSTRAINT_VIOLATION, ErrorCategory.POLICY_VIOLATION),  # type: ignore[attr-defined]
    (ldap.STRONG_AUTH_REQUIRED, ErrorCategory.POLICY_VIOLATION),  # type: ignore[attr-defined]
    (ldap.SERVER_DOWN, ErrorCategory.TRANSIENT_NETWORK),  # type: ignore[attr-defined]
    (ldap.CONNECT_ERROR, ErrorCategory.TRANSIENT_NETWORK),  # type: ignore[attr-defined]
    (ldap.TIMEOUT, ErrorCategory.TRANSIENT_NETWORK),  # type: ignore[attr-defined]
    (ldap.UNAVAILABLE, ErrorCategory.TRANSIENT_NETWORK),  # type: ignore[attr-defined]
    (ldap.BUSY, ErrorCategory.TRANSIENT_NETWORK),  # type: ignore[attr-defined]
]

#: AD extended error codes (the leading hex word of ``info``).
AD_EXTENDED_CODES: dict[str, ErrorCategory] = {
    "0000052D": ErrorCategory.POLICY_VIOLATION,
    "0000001F": ErrorCategory.INSUFFICIENT_ACCESS,
    "00000005": ErrorCategory.INSUFFICIENT_ACCESS,
}

#: The ``data`` sub-code AD appends to failed binds.
AD_BIND_SUBCODES: dict[str, str] = {
    "525": "user not found",
    "52e": "invalid password",
    "530": "not permitted to log on at this time",
    "531": "not permitted to log on from this workstation",
    "532": "password expired",
    "533": "account disabled",
    "701": "account expired",
    "773": "user must reset password",
    "775": "account locked out",
}

AD_EXTENDED_CODE_RE = re.compile(r"^\s*([0-9A-Fa-f]{8}):")
AD_BIND_SUBCODE_RE = re.compile(r"data ([0-9a-fA-F]{3}),")
CERTIFICATE_RE = re.compile(r"certificate|self[- ]signed|unknown ca", re.IGNORECASE)


def error_details(error: Exception) -> dict[str, Any]:
    """
    Return the details dictionary python-ldap attaches to its exceptions.

    python-ldap raises its exceptions with a single dict argument carrying
    ``result``, ``desc``, and usually ``info``.  Exceptions raised any other
    way give an empty dict.
    """
    if error.args and isinstance(error.args[0], dict):
        return error.args[0]
    return {}


def extended_code(error: Exception) -> str | None:
    """
    Return the AD extended error code from ``error``, upper-cased, or
    ``None`` if the server did not supply one.
    """
    info = str(error_details(error).get("info", ""))
    match = AD_EXTENDED_CODE_RE.match(info)
    if match:
        return match.group(1).upper()
    return None


def classify(error: Exception) -> ErrorCategory:
    """
    Sort ``error`` into an :py:class:`ErrorCategory`.

    Args:
        error: an exception raised by python-ldap

    Returns:
        The category of the failure.

    """
    info = str(error_details(error).get("info", ""))
    for exc_class, category in EXCEPTION_CATEGORIES:
        if isinstance(error, exc_class):
            if category is ErrorCategory.TRANSIENT_NETWORK and CERTIFICATE_RE.search(
                info
            ):
                return ErrorCategory.CERTIFICATE
            return category
    # UNWILLING_TO_PERFORM and friends: only AD's extended code tells us why
    code = extended_code(error)
    if code in AD_EXTENDED_CODES:
        return AD_EXTENDED_CODES[code]
    return ErrorCategory.UNKNOWN


def describe(error: Exception) -> str:
    """
    Build a human-readable one-line description of ``error``.

    Args:
        error: an exception raised by python-ldap

    Returns:
        The server's description, followed by the AD detail when there is one.

    """
    details = error_details(error)
    if not details:
        return str(error) or error.__class__.__name__
    message = str(details.get("desc", error.__class__.__name__))
    result = details.get("result")
    if isinstance(result, int) and result > 0:
        message = f"{message} (code {result})"
    info = str(details.get("info", "")).strip()
    subcode = AD_BIND_SUBCODE_RE.search(info)
    if subcode and subcode.group(1).lower() in AD_BIND_SUBCODES:
        message = f"{message}: {AD_BIND_SUBCODES[subcode.group(1).lower()]}"
    elif info:
        message = f"{message}: {info}"
    return message
