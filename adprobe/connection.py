"""
Connection lifecycle for a single directory server.

:py:class:`ConnectionManager` owns one python-ldap connection at a time.  It
dials lazily, rebinds with the remembered credential after a reconnect, probes
the root DSE before each use to catch connections that a server, NAT box or
firewall has silently dropped, and retries operations that failed because of
the network.  This is the only place in :py:mod:`adprobe` that retries
anything.
"""

import logging
import socket
import time
from collections.abc import Callable
from contextlib import suppress
from functools import wraps
from typing import Any

from adprobe import ldap

from .classifier import ErrorCategory, classify, describe
from .config import ANONYMOUS, CertificatePolicy, Credential, DirectoryEndpoint, TransportSecurity
from .exceptions import DirectoryError, from_ldap_error
from .progress import ProgressReporter
from .typing import AddModlist, LDAPData, ModifyModList, ProgressSink

logger = logging.getLogger("adprobe")

#: How many times an operation is attempted when the network fails
MAX_ATTEMPTS = 3
#: Seconds to wait after the first failed attempt; doubled after the second
RETRY_BACKOFF = 0.5

#: Failures that mean the socket itself is gone
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    ldap.SERVER_DOWN,  # type: ignore[attr-defined]
    ldap.CONNECT_ERROR,  # type: ignore[attr-defined]
    ldap.TIMEOUT,  # type: ignore[attr-defined]
)


# -----------------------
# Decorators
# -----------------------


def retry_transient(action: str, bind: bool = False) -> Callable:
    """
    Decorator for :py:class:`ConnectionManager` methods that talk to the server.

    Failures classified as
    :py:attr:`~adprobe.classifier.ErrorCategory.TRANSIENT_NETWORK` are retried
    up to ``self.max_attempts`` times with linear backoff, throwing away the
    connection in between so that the next attempt dials afresh.  Every other
    python-ldap failure is translated into a
    :py:class:`~adprobe.exceptions.DirectoryError` at once.

    Args:
        action: the name of the operation, for log and error messages

    Keyword Args:
        bind: ``True`` if the wrapped method binds

    Returns:
        A decorator.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            dn = args[0] if args and isinstance(args[0], str) else None
            last_error: Exception | None = None
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return func(self, *args, **kwargs)
                except ldap.LDAPError as e:  # type: ignore[attr-defined]
                    if classify(e) is not ErrorCategory.TRANSIENT_NETWORK:
                        raise from_ldap_error(e, action, dn=dn, bind=bind) from e
                    last_error = e
                    self.discard()
                    logger.warning(
                        "adprobe.connection.%s.failed url=%s attempt=%d/%d error=%s",
                        action,
                        self.endpoint.url,
                        attempt,
                        self.max_attempts,
                        describe(e),
                    )
                    if attempt < self.max_attempts:
                        self.report(
                            f"Lost connection to {self.endpoint.url} "
                            f"(attempt {attempt}/{self.max_attempts}), reconnecting..."
                        )
                        time.sleep(self.retry_backoff * attempt)
            raise from_ldap_error(
                last_error, action, dn=dn, bind=bind  # type: ignore[arg-type]
            ) from last_error

        return wrapper

    return real_decorator


class ConnectionManager(ProgressReporter):
    """
    Owns the live connection to one :py:class:`~adprobe.config.DirectoryEndpoint`.

    The connection is opened on first use.  Callers must never keep the raw
    ``LDAPObject`` returned by :py:attr:`connection` across calls: a reconnect
    replaces it.  Instances are not thread-safe; use one per thread.

    Args:
        endpoint: the server to talk to

    Keyword Args:
        credential: who to bind as; anonymous if not given
        progress: optional sink for human-readable progress messages
        max_attempts: how many times to try an operation that fails because
            of the network
        retry_backoff: base delay in seconds between attempts

    """

    def __init__(
        self,
        endpoint: DirectoryEndpoint,
        credential: Credential | None = None,
        progress: ProgressSink | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        retry_backoff: float = RETRY_BACKOFF,
    ) -> None:
        self.endpoint = endpoint
        self.credential = credential or ANONYMOUS
        self.progress = progress
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._connection: ldap.ldapobject.LDAPObject | None = None  # type: ignore[name-defined]

    def __enter__(self) -> "ConnectionManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -----------------------
    # Lifecycle
    # -----------------------

    def _initialize(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Create an unbound ``LDAPObject`` configured from our endpoint.  For
        STARTTLS this also negotiates TLS, which opens the socket; otherwise
        python-ldap does not connect until the first operation.
        """
        endpoint = self.endpoint
        ldap_object = ldap.initialize(endpoint.url)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_REFERRALS, 1 if endpoint.follow_referrals else 0)  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(endpoint.timeout))  # type: ignore[attr-defined]
        ldap_object.set_option(ldap.OPT_TIMEOUT, float(endpoint.timeout))  # type: ignore[attr-defined]
        if endpoint.is_secure:
            if endpoint.certificate_policy is CertificatePolicy.SKIP:
                logger.warning(
                    "adprobe.connection.tls.verify-disabled url=%s", endpoint.url
                )
                ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)  # type: ignore[attr-defined]
            else:
                ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)  # type: ignore[attr-defined]
            if endpoint.ca_certfile:
                ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, endpoint.ca_certfile)  # type: ignore[attr-defined]
            # Must come last so the TLS options above take effect
            ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
        if endpoint.security is TransportSecurity.STARTTLS:
            ldap_object.start_tls_s()
        return ldap_object

    def _probe(self, ldap_object: ldap.ldapobject.LDAPObject) -> None:  # type: ignore[name-defined]
        """
        Read the root DSE over ``ldap_object``.

        Transport failures propagate.  Any answer from the server, even an
        error result, proves the connection works and is ignored.
        """
        try:
            ldap_object.search_s(
                "",
                ldap.SCOPE_BASE,  # type: ignore[attr-defined]
                "(objectClass=*)",
                ["supportedLDAPVersion"],
            )
        except TRANSPORT_ERRORS:
            raise
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            logger.debug("adprobe.connection.probe.answered error=%s", describe(e))

    def _is_alive(self, ldap_object: ldap.ldapobject.LDAPObject) -> bool:  # type: ignore[name-defined]
        try:
            self._probe(ldap_object)
        except TRANSPORT_ERRORS as e:
            logger.info(
                "adprobe.connection.probe.dead url=%s error=%s",
                self.endpoint.url,
                describe(e),
            )
            return False
        return True

    def _open(self, bind: bool = True) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Dial the server and, if ``bind`` is set and we have a credential,
        bind with it.  Raises python-ldap exceptions untranslated.
        """
        ldap_object = self._initialize()
        try:
            self._probe(ldap_object)
            if bind and not self.credential.is_anonymous:
                ldap_object.simple_bind_s(self.credential.dn, self.credential.password)
        except ldap.LDAPError:  # type: ignore[attr-defined]
            with suppress(ldap.LDAPError):  # type: ignore[attr-defined]
                ldap_object.unbind_s()
            raise
        logger.info(
            "adprobe.connection.open url=%s bind_dn=%s",
            self.endpoint.url,
            self.credential.dn or "<anonymous>",
        )
        return ldap_object

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        The live ``LDAPObject``, dialing and binding first if there is none or
        the one we have has gone dead.  Raises python-ldap exceptions
        untranslated, so only use this from methods wrapped in
        :py:func:`retry_transient`.
        """
        if self._connection is not None and not self._is_alive(self._connection):
            self.report(f"Connection to {self.endpoint.url} was closed, reconnecting...")
            self.discard()
        if self._connection is None:
            self._connection = self._open()
        return self._connection

    def has_connection(self) -> bool:
        return self._connection is not None

    @retry_transient("connect")
    def dial(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Open a fresh connection, replacing any we have, and bind with the
        remembered credential.

        Raises:
            LDAPConnectionError: the server could not be reached, or its
                certificate could not be verified
            AuthError: the remembered credential was rejected

        Returns:
            The new connection.

        """
        self.discard()
        self._connection = self._open()
        return self._connection

    @retry_transient("connect")
    def ensure_live(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Return a connection known to be alive, reconnecting and rebinding
        transparently if the old one has been dropped.

        Raises:
            LDAPConnectionError: the server could not be reached

        Returns:
            The live connection.

        """
        return self.connection

    @retry_transient("bind", bind=True)
    def bind(self, credential: Credential | None = None) -> None:
        """
        Simple-bind as ``credential`` (or the credential we were built with),
        and remember it for rebinding after reconnects.  The anonymous
        credential skips the bind request entirely.

        Args:
            credential: who to bind as

        Raises:
            AuthError: the server rejected the credential
            LDAPConnectionError: the server could not be reached

        """
        candidate = credential if credential is not None else self.credential
        if candidate.is_anonymous:
            if not self.credential.is_anonymous:
                # Drop the connection bound as someone else
                self.discard()
            self.credential = candidate
            return
        if self._connection is None or not self._is_alive(self._connection):
            self.discard()
            self._connection = self._open(bind=False)
        try:
            self._connection.simple_bind_s(candidate.dn, candidate.password)
        except ldap.LDAPError:  # type: ignore[attr-defined]
            # A failed bind leaves the connection anonymous; the next use must
            # re-dial and rebind as self.credential
            self.discard()
            raise
        self.credential = candidate
        logger.info("adprobe.connection.bind.success bind_dn=%s", candidate.dn)

    def discard(self) -> None:
        """Throw away the current connection, ignoring any errors doing so."""
        if self._connection is not None:
            with suppress(ldap.LDAPError):  # type: ignore[attr-defined]
                self._connection.unbind_s()
            self._connection = None

    def close(self) -> None:
        """
        Unbind and release the connection.  Closing an already-closed manager
        is fine.
        """
        if self._connection is not None:
            self.discard()
            logger.info("adprobe.connection.close url=%s", self.endpoint.url)

    def port_open(self) -> bool:
        """
        Report whether anything accepts TCP connections on the endpoint's
        port.  This does not speak LDAP at all.
        """
        address = (self.endpoint.host, self.endpoint.effective_port)
        try:
            with socket.create_connection(address, timeout=self.endpoint.timeout):
                return True
        except OSError as e:
            logger.warning(
                "adprobe.connection.port.closed host=%s port=%d error=%s",
                address[0],
                address[1],
                e,
            )
            return False

    def open_as(self, credential: Credential) -> "ConnectionManager":
        """
        Return a new, separate manager for the same endpoint bound as
        ``credential``.  Used to test somebody else's password without
        disturbing our own bind.

        Raises:
            AuthError: the credential was rejected
            LDAPConnectionError: the server could not be reached

        """
        other = ConnectionManager(
            self.endpoint,
            credential,
            progress=self.progress,
            max_attempts=self.max_attempts,
            retry_backoff=self.retry_backoff,
        )
        try:
            other.bind()
        except DirectoryError:
            other.close()
            raise
        return other

    # -----------------------
    # Operations
    # -----------------------

    @retry_transient("search")
    def search(
        self,
        basedn: str,
        scope: int = ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
        filterstr: str = "(objectClass=*)",
        attrlist: list[str] | None = None,
    ) -> list[LDAPData]:
        """
        Search the directory.

        Args:
            basedn: the DN to search from
            scope: the LDAP search scope
            filterstr: the search filter
            attrlist: the attributes to return; ``None`` for all

        Raises:
            DirectoryError: the search failed

        Returns:
            A list of (dn, attributes) tuples.

        """
        data = self.connection.search_s(basedn, scope, filterstr, attrlist)
        # AD appends search result references, which have no attribute dict
        return [obj for obj in data if isinstance(obj[1], dict)]

    @retry_transient("add")
    def add(self, dn: str, modlist: AddModlist) -> None:
        self.connection.add_s(dn, modlist)
        logger.info("adprobe.connection.add dn=%s", dn)

    @retry_transient("modify")
    def modify(self, dn: str, modlist: ModifyModList) -> None:
        self.connection.modify_s(dn, modlist)
        logger.info(
            "adprobe.connection.modify dn=%s attributes=%s",
            dn,
            ",".join(sorted({mod[1] for mod in modlist})),
        )

    @retry_transient("rename")
    def rename(self, dn: str, newrdn: str, newsuperior: str | None = None) -> None:
        """
        Rename ``dn`` to ``newrdn`` and, if ``newsuperior`` is given, move it
        under that parent, in one ModifyDN request.  The old RDN value is
        deleted.
        """
        self.connection.rename_s(dn, newrdn, newsuperior, delold=1)
        logger.info(
            "adprobe.connection.rename dn=%s newrdn=%s newsuperior=%s",
            dn,
            newrdn,
            newsuperior,
        )

    @retry_transient("whoami")
    def whoami(self) -> str:
        """Return the authorization identity the server thinks we are."""
        return self.connection.whoami_s()
