"""
Exceptions raised by the directory engine.

Every failure that leaves :py:mod:`adprobe` is a :py:class:`DirectoryError`
carrying an :py:class:`~adprobe.classifier.ErrorCategory`, so that callers can
decide between retrying, failing, and asking the user to fix their input
without knowing anything about python-ldap.
"""

from adprobe.classifier import HINTS, ErrorCategory, classify, describe


class DirectoryError(Exception):
    """
    Base class for all directory failures.

    Args:
        message: a human-readable description of what went wrong

    Keyword Args:
        category: the failure category; defaults to the class's ``category``
        dn: the DN the failing operation was working on, if any

    """

    #: The default category for this class of error.
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        category: ErrorCategory | None = None,
        dn: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        self.dn = dn

    @property
    def hint(self) -> str:
        """The remediation hint for this failure's category."""
        return HINTS[self.category]

    @property
    def retryable(self) -> bool:
        return self.category.retryable

    def __str__(self) -> str:
        return self.message


class LDAPConnectionError(DirectoryError):
    """Dialing the server or negotiating TLS failed."""

    category = ErrorCategory.TRANSIENT_NETWORK


class AuthError(DirectoryError):
    """A bind failed: bad credentials, or the account lacks rights."""

    category = ErrorCategory.INVALID_CREDENTIALS


class PathError(DirectoryError):
    """A DN is malformed, or has a component type we cannot create."""

    category = ErrorCategory.NO_SUCH_OBJECT


class ConflictError(DirectoryError):
    """
    An entity already exists.

    Args:
        message: a human-readable description of the conflict
        existing_dn: where the existing entity lives
        same_place: ``True`` if ``existing_dn`` is the DN we wanted

    """

    category = ErrorCategory.ALREADY_EXISTS

    def __init__(self, message: str, existing_dn: str, same_place: bool) -> None:
        super().__init__(message, dn=existing_dn)
        self.existing_dn = existing_dn
        self.same_place = same_place


class PolicyError(DirectoryError):
    """The request was refused by policy: password complexity, plaintext password set."""

    category = ErrorCategory.POLICY_VIOLATION


class ProtocolError(DirectoryError):
    """Any other server-reported failure."""


#: Which exception class represents each category outside of a bind.
CATEGORY_EXCEPTIONS: dict[ErrorCategory, type[DirectoryError]] = {
    ErrorCategory.TRANSIENT_NETWORK: LDAPConnectionError,
    ErrorCategory.CERTIFICATE: LDAPConnectionError,
    ErrorCategory.POLICY_VIOLATION: PolicyError,
    ErrorCategory.INVALID_CREDENTIALS: AuthError,
}


def from_ldap_error(
    error: Exception,
    action: str,
    dn: str | None = None,
    bind: bool = False,
) -> DirectoryError:
    """
    Translate a python-ldap exception into our exception taxonomy.

    Args:
        error: the exception python-ldap raised
        action: what we were doing, e.g. ``"search"``; used in the message
        dn: the DN we were operating on

    Keyword Args:
        bind: ``True`` if ``error`` came from a bind, in which case
            insufficient access is an :py:class:`AuthError` too

    Returns:
        The translated exception, ready to be raised ``from error``.

    """
    category = classify(error)
    exc_class: type[DirectoryError] = CATEGORY_EXCEPTIONS.get(category, ProtocolError)
    if bind and category is ErrorCategory.INSUFFICIENT_ACCESS:
        exc_class = AuthError
    message = f"{action} failed: {describe(error)}"
    if dn:
        message = f"{action} {dn} failed: {describe(error)}"
    return exc_class(message, category=category, dn=dn)
