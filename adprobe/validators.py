"""
Input validation for the values a user types into a directory test form.

The validators follow the Django validator protocol: call them with a value
and they raise :py:class:`django.core.exceptions.ValidationError` if it is
unacceptable, so they can be attached straight to Django form fields.
:py:func:`check` turns that into our own exception taxonomy for callers that
are not Django forms.
"""

import re
from typing import Any

from django.core import validators
from django.core.exceptions import ValidationError

from . import dn as dnutil
from .config import LDAP_PORT, LDAPS_PORT, TransportSecurity
from .exceptions import DirectoryError


class BaseValidator:  # noqa: PLW1641
    """
    Shared plumbing for our validators.

    Keyword Args:
        message: The message to display when the validation fails.
        code: The code to display when the validation fails.

    """

    #: The message to display when the validation fails.
    message: str = "Enter a valid value."
    #: The code to display when the validation fails.
    code: str = "invalid"
    #: The list of empty values.
    empty_values: list[Any] = list(validators.EMPTY_VALUES)  # noqa: RUF012

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code

    def fail(self, value: Any) -> None:
        raise ValidationError(self.message, code=self.code, params={"value": value})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return False
        return self.message == other.message and self.code == other.code


class DistinguishedNameValidator(BaseValidator):
    """
    Accepts a syntactically valid DN with at least two components, e.g.
    ``CN=Alice,DC=example``.  A single RDN has no parent to put it in.
    """

    message = "Enter a valid distinguished name, e.g. CN=Alice,OU=Staff,DC=corp,DC=example."
    code = "invalid_dn"

    def __call__(self, value: Any) -> None:
        if value in self.empty_values or not isinstance(value, str):
            self.fail(value)
        if not dnutil.is_valid(value):
            self.fail(value)
        if len(dnutil.parse(value)) < 2:  # noqa: PLR2004
            self.fail(value)


class AccountNameValidator(BaseValidator):
    """
    Accepts a valid ``sAMAccountName``: at most 20 characters, none of
    ``"/\\[]:;|=,+*?<>@``, no control characters, and not ending in a period.
    """

    message = (
        "Enter a valid account name: at most 20 characters, not ending in a "
        'period, and none of " / \\ [ ] : ; | = , + * ? < > @'
    )
    code = "invalid_account_name"
    #: AD's limit for pre-Windows 2000 logon names
    MAX_LENGTH = 20
    INVALID_CHARACTERS = re.compile(r'["/\\\[\]:;|=,+*?<>@\x00-\x1f]')

    def __call__(self, value: Any) -> None:
        if value in self.empty_values or not isinstance(value, str):
            self.fail(value)
        if len(value) > self.MAX_LENGTH:
            self.fail(value)
        if self.INVALID_CHARACTERS.search(value) or value.endswith("."):
            self.fail(value)
        if not value.strip():
            self.fail(value)


class PortValidator(BaseValidator):
    """Accepts a TCP port number, as an ``int`` or a string of digits."""

    message = "Enter a port number between 1 and 65535."
    code = "invalid_port"

    def __call__(self, value: Any) -> None:
        if isinstance(value, str):
            if not value.strip().isdigit():
                self.fail(value)
            value = int(value)
        if not isinstance(value, int) or isinstance(value, bool):
            self.fail(value)
        if not 1 <= value <= 65535:  # noqa: PLR2004
            self.fail(value)


validate_dn = DistinguishedNameValidator()
validate_account_name = AccountNameValidator()
validate_port = PortValidator()


def default_port(security: TransportSecurity) -> int:
    """Return the well known port for ``security``."""
    if security is TransportSecurity.TLS:
        return LDAPS_PORT
    return LDAP_PORT


def clean_port(value: Any, security: TransportSecurity) -> int:
    """
    Turn what was typed in a port field into a port number, filling in the
    default for ``security`` when the field is blank.

    Raises:
        ValidationError: ``value`` is not blank and not a valid port

    """
    if value in validators.EMPTY_VALUES or (isinstance(value, str) and not value.strip()):
        return default_port(security)
    validate_port(value)
    return int(value)


def check(
    validator: BaseValidator, value: Any, exc_class: type[DirectoryError]
) -> None:
    """
    Run ``validator`` on ``value``, raising ``exc_class`` instead of
    :py:class:`~django.core.exceptions.ValidationError`.
    """
    try:
        validator(value)
    except ValidationError as e:
        msg = f"{value!r}: {e.messages[0]}"
        dn = value if isinstance(validator, DistinguishedNameValidator) else None
        raise exc_class(msg, dn=dn) from e
