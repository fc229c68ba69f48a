"""
The operations a directory test tool offers its user.

:py:class:`DirectoryTester` is what a user interface talks to.  Every method
returns an :py:class:`~adprobe.outcomes.Outcome` and never raises a
:py:class:`~adprobe.exceptions.DirectoryError`: failures come back as
:py:attr:`~adprobe.outcomes.Status.FAILED` outcomes carrying the error and its
remediation hint.  Progress is written to the optional sink as it happens.
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from . import config
from .capabilities import read_server_info
from .config import Credential, DirectoryEndpoint
from .connection import ConnectionManager
from .exceptions import DirectoryError, LDAPConnectionError, PathError
from .outcomes import Outcome, Status
from .progress import ProgressReporter
from .provisioner import EntityProvisioner
from .typing import ProgressSink

logger = logging.getLogger("adprobe")


def outcome_of(action: str) -> Callable:
    """
    Decorator for :py:class:`DirectoryTester` methods: turn a raised
    :py:class:`~adprobe.exceptions.DirectoryError` into a failed
    :py:class:`~adprobe.outcomes.Outcome`, and report it.

    Args:
        action: a description of the operation, for messages

    Returns:
        A decorator.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Outcome:
            try:
                outcome = func(self, *args, **kwargs)
            except DirectoryError as e:
                logger.error(
                    "adprobe.service.%s.failed category=%s error=%s",
                    func.__name__,
                    e.category.value,
                    e,
                )
                self.report(f"{action} failed: {e}")
                self.report(f"Hint: {e.hint}")
                return Outcome.failed(e)
            self.report(f"{action}: {outcome.message}")
            return outcome

        return wrapper

    return real_decorator


class DirectoryTester(ProgressReporter):
    """
    One directory server, one bind account, and everything we can test or
    provision with them.

    Args:
        endpoint: the server to test

    Keyword Args:
        credential: the account to bind as; anonymous if not given
        search_base: the default subtree for searches
        progress: optional sink for human-readable progress messages

    """

    def __init__(
        self,
        endpoint: DirectoryEndpoint,
        credential: Credential | None = None,
        search_base: str | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.search_base = search_base
        self.progress = progress
        self.connection = ConnectionManager(endpoint, credential, progress=progress)
        self.provisioner = EntityProvisioner(
            self.connection, search_base=search_base, progress=progress
        )
        self.groups = self.provisioner.groups

    @classmethod
    def from_settings(
        cls, name: str = "default", progress: ProgressSink | None = None
    ) -> "DirectoryTester":
        """
        Build a tester for the server called ``name`` in
        ``settings.LDAP_SERVERS``.

        Raises:
            django.core.exceptions.ImproperlyConfigured: the configuration is
                missing or invalid

        """
        endpoint, credential, basedn = config.from_settings(name)
        return cls(endpoint, credential, search_base=basedn, progress=progress)

    def __enter__(self) -> "DirectoryTester":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.provisioner.close()

    # -----------------------
    # Tests
    # -----------------------

    @outcome_of("Port test")
    def test_port(self) -> Outcome:
        """Check that something accepts TCP connections on the LDAP port."""
        self.report(f"Checking {self.endpoint.host}:{self.endpoint.effective_port}...")
        if not self.connection.port_open():
            msg = (
                f"Port {self.endpoint.effective_port} on {self.endpoint.host} "
                "is not accepting connections"
            )
            raise LDAPConnectionError(msg)
        return Outcome(
            Status.CONNECTED,
            details={"host": self.endpoint.host, "port": self.endpoint.effective_port},
        )

    @outcome_of("Connectivity test")
    def test_connectivity(self) -> Outcome:
        """
        Connect without binding, negotiating TLS if configured, and describe
        the server from its root DSE.
        """
        self.report(f"Connecting to {self.endpoint.url}...")
        with ConnectionManager(self.endpoint, progress=self.progress) as probe:
            probe.dial()
            info = read_server_info(probe)
        details: dict[str, Any] = info.as_dict()
        details["url"] = self.endpoint.url
        return Outcome(Status.CONNECTED, details=details)

    @outcome_of("Bind test")
    def test_bind(self, credential: Credential | None = None) -> Outcome:
        """
        Bind as ``credential``, or as the tester's own account.  A successful
        bind becomes the tester's bind for later operations.
        """
        self.connection.bind(credential)
        identity: str | None = None
        try:
            identity = self.connection.whoami()
        except DirectoryError as e:
            # Not every server implements the Who Am I? extended operation
            logger.info("adprobe.service.whoami.unsupported error=%s", e)
        return Outcome(
            Status.BOUND,
            dn=self.connection.credential.dn or None,
            details={"whoami": identity},
        )

    @outcome_of("Authentication test")
    def test_user_auth(
        self,
        account_name: str,
        password: str,
        search_base: str | None = None,
        filter_pattern: str = "sAMAccountName",
    ) -> Outcome:
        return self.provisioner.authenticate(
            account_name,
            password,
            search_base=search_base,
            filter_pattern=filter_pattern,
        )

    # -----------------------
    # Provisioning
    # -----------------------

    @outcome_of("Provision user")
    def provision_user(
        self,
        target_dn: str,
        account_name: str,
        password: str | None = None,
        want_enabled: bool = False,
        search_base: str | None = None,
    ) -> Outcome:
        return self.provisioner.provision_user(
            target_dn,
            account_name,
            password=password,
            want_enabled=want_enabled,
            search_base=search_base,
        )

    @outcome_of("Move")
    def move_entity(self, old_dn: str, new_dn: str) -> Outcome:
        return self.provisioner.move_entity(old_dn, new_dn)

    @outcome_of("Password update")
    def update_user_password(
        self, dn: str, new_password: str, enable: bool = True
    ) -> Outcome:
        return self.provisioner.update_user_password(dn, new_password, enable=enable)

    @outcome_of("Provision group")
    def provision_group(
        self,
        group_dn: str,
        group_name: str | None = None,
        search_base: str | None = None,
    ) -> Outcome:
        return self.provisioner.provision_group(
            group_dn, group_name=group_name, search_base=search_base
        )

    @outcome_of("Create group")
    def create_group(self, group_dn: str, group_name: str | None = None) -> Outcome:
        return self.groups.create_group(group_dn, group_name=group_name)

    @outcome_of("SSO group configuration")
    def configure_group_for_sso(
        self, group_dn: str, search_base: str | None = None
    ) -> Outcome:
        base = search_base or self.search_base
        if not base:
            msg = "A search base is needed to configure an SSO group"
            raise PathError(msg, dn=group_dn)
        return self.groups.configure_group_for_sso(group_dn, base)

    @outcome_of("Group membership")
    def set_sole_group_membership(
        self, user_dn: str, group_dn: str, search_base: str | None = None
    ) -> Outcome:
        return self.groups.set_sole_group_membership(
            user_dn, group_dn, search_base=search_base or self.search_base
        )

    @outcome_of("Primary group")
    def set_primary_group(self, user_dn: str, group_dn: str) -> Outcome:
        return self.groups.set_primary_group(user_dn, group_dn)
