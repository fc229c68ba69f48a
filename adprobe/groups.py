"""
Group membership and SSO group configuration.

Membership is always read and written on the group side, through its
``member`` attribute.  ``memberOf`` on the user is a back-link the server
computes, and is not writable.
"""

import logging

from adprobe import ldap

from . import ad
from . import dn as dnutil
from .classifier import ErrorCategory
from .connection import ConnectionManager
from .exceptions import DirectoryError, PathError, ProtocolError
from .filters import entity_filter
from .outcomes import Outcome, Status
from .paths import PathResolver
from .progress import ProgressReporter
from .typing import ProgressSink

logger = logging.getLogger("adprobe")

#: Prefix of the ``adminDescription`` marker we leave on the search base
SSO_READER_MARKER = "SSO_Reader:"


class GroupConfigurator(ProgressReporter):
    """
    Manages which groups a user belongs to, and prepares groups for use by
    an SSO application.

    Args:
        connection: the connection to work through

    Keyword Args:
        paths: the resolver used to create missing parent containers; one
            is made for ``connection`` if not given
        progress: optional sink for human-readable progress messages

    """

    def __init__(
        self,
        connection: ConnectionManager,
        paths: PathResolver | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.connection = connection
        self.progress = progress
        self.paths = paths or PathResolver(connection, progress=progress)

    def _search_base(self, dn: str, search_base: str | None) -> str:
        base = search_base or dnutil.domain_root(dn)
        if not base:
            msg = f"No search base given and {dn} has no DC= components"
            raise PathError(msg, dn=dn)
        return base

    # -----------------------
    # Membership
    # -----------------------

    def member_of(self, user_dn: str, search_base: str | None = None) -> list[str]:
        """
        List the groups whose ``member`` attribute names ``user_dn``.

        Args:
            user_dn: the user's DN

        Keyword Args:
            search_base: where to look for groups; defaults to the DC root of
                ``user_dn``

        Returns:
            The DNs of the groups, in the order the server returned them.

        """
        base = self._search_base(user_dn, search_base)
        results = self.connection.search(
            base,
            ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
            entity_filter("group", "member", user_dn),
            ["cn"],
        )
        return [group_dn for group_dn, _ in results]

    def add_member(self, user_dn: str, group_dn: str) -> bool:
        """
        Add ``user_dn`` to ``group_dn``.

        Returns:
            ``True`` if we added it, ``False`` if it was already a member.

        """
        try:
            self.connection.modify(
                group_dn,
                [(ldap.MOD_ADD, "member", [user_dn.encode("utf-8")])],  # type: ignore[attr-defined]
            )
        except DirectoryError as e:
            if e.category is ErrorCategory.ALREADY_EXISTS:
                logger.info(
                    "adprobe.groups.add_member.already-member user=%s group=%s",
                    user_dn,
                    group_dn,
                )
                return False
            raise
        self.report(f"Added {user_dn} to {group_dn}")
        return True

    def remove_member(self, user_dn: str, group_dn: str) -> bool:
        """
        Remove ``user_dn`` from ``group_dn``.

        Returns:
            ``True`` if we removed it, ``False`` if it was not a member.

        """
        try:
            self.connection.modify(
                group_dn,
                [(ldap.MOD_DELETE, "member", [user_dn.encode("utf-8")])],  # type: ignore[attr-defined]
            )
        except DirectoryError as e:
            if e.category is ErrorCategory.NO_SUCH_OBJECT:
                logger.info(
                    "adprobe.groups.remove_member.not-member user=%s group=%s",
                    user_dn,
                    group_dn,
                )
                return False
            raise
        self.report(f"Removed {user_dn} from {group_dn}")
        return True

    def set_sole_group_membership(
        self, user_dn: str, group_dn: str, search_base: str | None = None
    ) -> Outcome:
        """
        Make ``group_dn`` the only group ``user_dn`` belongs to.

        The user is taken out of every other group first, then added to
        ``group_dn``.  If a removal fails we stop there and raise; running the
        operation again picks up where it left off.

        Args:
            user_dn: the user's DN
            group_dn: the group that should be the user's only group

        Keyword Args:
            search_base: where to look for the user's current groups

        Raises:
            DirectoryError: a removal or the addition failed

        Returns:
            An :py:attr:`~adprobe.outcomes.Status.UPDATED` outcome whose
            details list the groups the user was removed from.

        """
        removed: list[str] = []
        for current in self.member_of(user_dn, search_base=search_base):
            if dnutil.same_dn(current, group_dn):
                continue
            if self.remove_member(user_dn, current):
                removed.append(current)
        added = self.add_member(user_dn, group_dn)
        logger.info(
            "adprobe.groups.sole_membership user=%s group=%s removed=%d",
            user_dn,
            group_dn,
            len(removed),
        )
        return Outcome(
            Status.UPDATED,
            dn=user_dn,
            details={"group": group_dn, "removed": removed, "added": added},
        )

    # -----------------------
    # Groups
    # -----------------------

    def create_group(self, group_dn: str, group_name: str | None = None) -> Outcome:
        """
        Create a global security group at ``group_dn``, creating its parent
        containers if needed.

        Args:
            group_dn: where to create the group

        Keyword Args:
            group_name: the ``sAMAccountName``; defaults to the group's CN

        Returns:
            :py:attr:`~adprobe.outcomes.Status.CREATED`, or
            :py:attr:`~adprobe.outcomes.Status.SAME_PLACE` if something was
            already at ``group_dn``.

        """
        leaf_rdn, parent = dnutil.split(group_dn)
        _, cn = dnutil.leaf(group_dn)
        name = group_name or cn
        self.paths.ensure_exists(parent)
        modlist = [
            ("objectClass", ad.GROUP_OBJECTCLASSES),
            ("cn", [cn.encode("utf-8")]),
            ("sAMAccountName", [name.encode("utf-8")]),
            ("groupType", [str(ad.GLOBAL_SECURITY_GROUP).encode("utf-8")]),
        ]
        try:
            self.connection.add(group_dn, modlist)
        except DirectoryError as e:
            if e.category is ErrorCategory.ALREADY_EXISTS:
                self.report(f"Group {group_dn} already exists")
                return Outcome(Status.SAME_PLACE, dn=group_dn)
            raise
        logger.info("adprobe.groups.created dn=%s rdn=%s", group_dn, leaf_rdn)
        self.report(f"Created group {group_dn}")
        return Outcome(Status.CREATED, dn=group_dn)

    def _read_sid(self, dn: str) -> bytes:
        results = self.connection.search(
            dn,
            ldap.SCOPE_BASE,  # type: ignore[attr-defined]
            "(objectClass=*)",
            ["objectSid"],
        )
        values = results[0][1].get("objectSid", []) if results else []
        if not values:
            msg = f"{dn} has no objectSid"
            raise ProtocolError(msg, dn=dn)
        return values[0]

    def get_group_sid(self, group_dn: str) -> str:
        """
        Read the SID of ``group_dn``.

        Raises:
            ProtocolError: the group has no readable or well formed ``objectSid``

        Returns:
            The SID in ``S-1-5-21-...`` form.

        """
        sid = self._read_sid(group_dn)
        try:
            return ad.sid_to_string(sid)
        except ValueError as e:
            msg = f"{group_dn} has a malformed objectSid: {e}"
            raise ProtocolError(msg, dn=group_dn) from e

    def set_primary_group(self, user_dn: str, group_dn: str) -> Outcome:
        """
        Make ``group_dn`` the primary group of ``user_dn``.

        AD only accepts a primary group the user is already a member of, so
        the user is added to the group first.  ``primaryGroupID`` holds the
        group's RID: the last sub-authority of its SID.

        Raises:
            ProtocolError: the group's SID could not be read
            DirectoryError: a modify failed

        Returns:
            An :py:attr:`~adprobe.outcomes.Status.UPDATED` outcome.

        """
        sid = self._read_sid(group_dn)
        try:
            rid = ad.sid_rid(sid)
        except ValueError as e:
            msg = f"{group_dn} has a malformed objectSid: {e}"
            raise ProtocolError(msg, dn=group_dn) from e
        self.add_member(user_dn, group_dn)
        self.connection.modify(
            user_dn,
            [(ldap.MOD_REPLACE, "primaryGroupID", [str(rid).encode("utf-8")])],  # type: ignore[attr-defined]
        )
        self.report(f"Set primary group of {user_dn} to {group_dn}")
        return Outcome(Status.UPDATED, dn=user_dn, details={"primaryGroupID": rid})

    def configure_group_for_sso(self, group_dn: str, search_base: str) -> Outcome:
        """
        Prepare ``group_dn`` to be the group an SSO application reads users
        from.

        The group becomes a global security group described as an LDAP
        authentication group, managed by ``search_base``.  A
        ``SSO_Reader:<group dn>`` marker is written to the ``adminDescription``
        of ``search_base`` without disturbing any value already there; if the
        server refuses the extra value, or we may not write it at all, that is
        only a warning.
        Security descriptors are not touched.

        Args:
            group_dn: the group to configure
            search_base: the container the SSO application searches

        Raises:
            DirectoryError: updating the group failed

        Returns:
            An :py:attr:`~adprobe.outcomes.Status.UPDATED` outcome.  Its
            details hold the group SID if it could be read, and any warnings.

        """
        warnings: list[str] = []
        self.connection.modify(
            group_dn,
            [
                (ldap.MOD_REPLACE, "groupType", [str(ad.GLOBAL_SECURITY_GROUP).encode("utf-8")]),  # type: ignore[attr-defined]
                (ldap.MOD_REPLACE, "description", [ad.SSO_GROUP_DESCRIPTION.encode("utf-8")]),  # type: ignore[attr-defined]
            ],
        )
        self.report(f"Configured {group_dn} as an LDAP authentication group")
        marker = f"{SSO_READER_MARKER}{group_dn}"
        try:
            self.connection.modify(
                search_base,
                [(ldap.MOD_ADD, "adminDescription", [marker.encode("utf-8")])],  # type: ignore[attr-defined]
            )
        except DirectoryError as e:
            logger.warning(
                "adprobe.groups.sso.marker-failed base=%s error=%s", search_base, e
            )
            warnings.append(f"Could not mark {search_base} for SSO: {e}")
            self.report(warnings[-1])
        self.connection.modify(
            group_dn,
            [(ldap.MOD_REPLACE, "managedBy", [search_base.encode("utf-8")])],  # type: ignore[attr-defined]
        )
        sid: str | None = None
        try:
            sid = self.get_group_sid(group_dn)
        except DirectoryError as e:
            logger.warning("adprobe.groups.sso.no-sid dn=%s error=%s", group_dn, e)
        else:
            self.report(f"Group SID: {sid}")
        return Outcome(
            Status.UPDATED,
            dn=group_dn,
            details={"sid": sid, "managed_by": search_base, "warnings": warnings},
        )
