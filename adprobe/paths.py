"""
Making sure the containers a DN lives in exist.
"""

import logging

from adprobe import ldap

from . import ad
from . import dn as dnutil
from .classifier import ErrorCategory
from .connection import ConnectionManager
from .exceptions import DirectoryError, PathError
from .progress import ProgressReporter
from .typing import AddModlist, ProgressSink

logger = logging.getLogger("adprobe")

#: The object classes we create for each kind of missing level
CONTAINER_TYPES: dict[str, list[bytes]] = {
    "cn": ad.CONTAINER_OBJECTCLASSES,
    "ou": ad.OU_OBJECTCLASSES,
}


class PathResolver(ProgressReporter):
    """
    Checks for, and creates, the container hierarchy above an entity.

    Args:
        connection: the connection to work through

    Keyword Args:
        progress: optional sink for human-readable progress messages

    """

    def __init__(
        self, connection: ConnectionManager, progress: ProgressSink | None = None
    ) -> None:
        self.connection = connection
        self.progress = progress

    def exists(self, dn: str) -> bool:
        """
        Report whether an entry exists at ``dn``.

        Args:
            dn: the DN to look for

        Raises:
            PathError: ``dn`` is malformed
            DirectoryError: the lookup failed for any reason other than the
                entry not existing

        Returns:
            ``True`` if the entry exists.

        """
        dnutil.parse(dn)
        try:
            result = self.connection.search(
                dn,
                ldap.SCOPE_BASE,  # type: ignore[attr-defined]
                "(objectClass=*)",
                ["objectClass"],
            )
        except DirectoryError as e:
            if e.category is ErrorCategory.NO_SUCH_OBJECT:
                return False
            raise
        return bool(result)

    def _modlist(self, dn: str) -> AddModlist:
        attr, value = dnutil.leaf(dn)
        objectclasses = CONTAINER_TYPES.get(attr.lower())
        if objectclasses is None:
            msg = (
                f'Cannot create "{dn}": only CN= (container) and OU= '
                f"(organizationalUnit) levels can be created, not {attr.upper()}="
            )
            raise PathError(msg, dn=dn)
        naming_attribute = "cn" if attr.lower() == "cn" else "ou"
        return [
            ("objectClass", objectclasses),
            (naming_attribute, [value.encode("utf-8")]),
        ]

    def create(self, dn: str) -> bool:
        """
        Add a container or organizational unit at ``dn``, depending on the
        type of its leaf RDN.

        Raises:
            PathError: the leaf RDN is neither ``CN=`` nor ``OU=``

        Returns:
            ``True`` if we created it, ``False`` if it turned out to exist
            already.

        """
        modlist = self._modlist(dn)
        try:
            self.connection.add(dn, modlist)
        except DirectoryError as e:
            if e.category is ErrorCategory.ALREADY_EXISTS:
                logger.info("adprobe.paths.create.raced dn=%s", dn)
                return False
            raise
        logger.info("adprobe.paths.created dn=%s", dn)
        self.report(f"Created {dn}")
        return True

    def ensure_exists(self, dn: str) -> list[str]:
        """
        Make sure ``dn`` and every container above it exist, creating the
        missing ones from the top down.

        ``DC=`` levels are taken to exist already: they are the naming
        context, and creating domains is not our business.

        Args:
            dn: the DN of the container that must exist

        Raises:
            PathError: ``dn`` is malformed, or a missing level is of a type we
                cannot create
            DirectoryError: a search or add failed

        Returns:
            The DNs we created, root-most first.  Empty if everything was
            already there.

        """
        chain = dnutil.ancestors(dn)
        if not chain:
            msg = "Cannot ensure the root DN exists"
            raise PathError(msg, dn=dn)
        if self.exists(dn):
            return []
        created: list[str] = []
        for level in chain:
            if dnutil.leaf(level)[0].lower() == "dc":
                continue
            if self.exists(level):
                continue
            if self.create(level):
                created.append(level)
        return created

