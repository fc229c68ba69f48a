"""
Tagged results returned by the provisioning and test operations.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .classifier import ErrorCategory
from .exceptions import DirectoryError


class Status(Enum):
    CONNECTED = "connected"
    BOUND = "bound"
    AUTHENTICATED = "authenticated"
    #: A new entry was added at the requested DN
    CREATED = "created"
    #: The entity already existed exactly where it was wanted
    SAME_PLACE = "same_place"
    #: The entity already existed, but at a different DN; nothing was created
    ELSEWHERE = "elsewhere"
    MOVED = "moved"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """
    The result of one operation.

    Attributes:
        status: what happened
        dn: the DN the outcome is about.  For
            :py:attr:`Status.SAME_PLACE` and :py:attr:`Status.ELSEWHERE`
            this is where the existing entity lives.
        enabled: for users, whether the account is enabled
        details: operation-specific extras, e.g. the group SID
        error: for :py:attr:`Status.FAILED`, the failure

    """

    status: Status
    dn: str | None = None
    enabled: bool | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error: DirectoryError | None = None

    @property
    def ok(self) -> bool:
        return self.status is not Status.FAILED

    @property
    def category(self) -> ErrorCategory | None:
        if self.error is None:
            return None
        return self.error.category

    @property
    def hint(self) -> str | None:
        if self.error is None:
            return None
        return self.error.hint

    @property
    def message(self) -> str:
        """A one-line human-readable summary."""
        if self.error is not None:
            return f"Failed: {self.error}"
        text = self.status.name.replace("_", " ").capitalize()
        if self.dn:
            text = f"{text}: {self.dn}"
        if self.enabled is not None:
            text = f"{text} ({'enabled' if self.enabled else 'disabled'})"
        return text

    @classmethod
    def failed(cls, error: DirectoryError) -> "Outcome":
        return cls(Status.FAILED, dn=error.dn, error=error)
