"""
Idempotent provisioning of users and groups.

Every ``provision_*`` operation answers the question "make sure this entity
exists here": it creates the entity if it is nowhere to be found, reports
where it is if it already exists, and never moves or overwrites anything on
its own.  Moving an entity is a separate, explicit operation.
"""

import logging

from adprobe import ldap

from . import ad
from . import dn as dnutil
from .classifier import ErrorCategory
from .config import Credential
from .connection import ConnectionManager
from .exceptions import AuthError, ConflictError, DirectoryError, PathError, PolicyError
from .filters import COMMON_FILTERS, entity_filter, format_template
from .groups import GroupConfigurator
from .outcomes import Outcome, Status
from .paths import PathResolver
from .progress import ProgressReporter
from .typing import AddModlist, LDAPData, ProgressSink
from .validators import check, validate_account_name, validate_dn

logger = logging.getLogger("adprobe")


class EntityProvisioner(ProgressReporter):
    """
    Creates, finds, moves and updates users and groups.

    Args:
        connection: the connection to work through.  The provisioner owns it
            from here on: :py:meth:`close` closes it.

    Keyword Args:
        search_base: where to look for existing entities when an operation
            is not given a search base; defaults to the DC root of the
            target DN
        progress: optional sink for human-readable progress messages

    """

    def __init__(
        self,
        connection: ConnectionManager,
        search_base: str | None = None,
        progress: ProgressSink | None = None,
    ) -> None:
        self.connection = connection
        self.search_base = search_base
        self.progress = progress
        self.paths = PathResolver(connection, progress=progress)
        self.groups = GroupConfigurator(connection, paths=self.paths, progress=progress)

    def __enter__(self) -> "EntityProvisioner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.connection.close()

    def _search_base(self, dn: str, search_base: str | None = None) -> str:
        base = search_base or self.search_base or dnutil.domain_root(dn)
        if not base:
            msg = f"No search base given and {dn} has no DC= components"
            raise PathError(msg, dn=dn)
        return base

    def _require_secure(self, action: str, dn: str) -> None:
        if not self.connection.endpoint.is_secure:
            msg = (
                f"Refusing to {action} for {dn} over an unencrypted connection; "
                "use LDAPS or STARTTLS"
            )
            raise PolicyError(msg, dn=dn)

    # -----------------------
    # Lookups
    # -----------------------

    def _find(
        self,
        name: str,
        search_base: str,
        object_class: str,
        attribute: str,
        attrlist: list[str] | None = None,
    ) -> LDAPData | None:
        results = self.connection.search(
            search_base,
            ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
            entity_filter(object_class, attribute, name),
            attrlist or ["cn"],
        )
        if not results:
            return None
        if len(results) > 1:
            logger.warning(
                "adprobe.provisioner.search.multiple name=%s base=%s count=%d",
                name,
                search_base,
                len(results),
            )
        return results[0]

    def search_entity(
        self,
        name: str,
        search_base: str,
        object_class: str = "user",
        attribute: str = "sAMAccountName",
    ) -> str | None:
        """
        Find an entity by name.

        Args:
            name: the value to look for; matched literally, wildcards and all
            search_base: the subtree to search

        Keyword Args:
            object_class: the object class the entity must have
            attribute: the attribute ``name`` must equal

        Returns:
            The DN of the first match, or ``None``.

        """
        found = self._find(name, search_base, object_class, attribute)
        return found[0] if found else None

    # -----------------------
    # Users
    # -----------------------

    def _user_modlist(
        self, target_dn: str, account_name: str, password: str | None, enabled: bool
    ) -> AddModlist:
        _, cn = dnutil.leaf(target_dn)
        name = account_name.encode("utf-8")
        modlist: AddModlist = [
            ("objectClass", ad.USER_OBJECTCLASSES),
            ("cn", [cn.encode("utf-8")]),
            ("sAMAccountName", [name]),
            ("name", [name]),
            ("givenName", [name]),
            ("sn", [name]),
            ("displayName", [name]),
        ]
        upn = ad.user_principal_name(account_name, target_dn, self.connection.endpoint.host)
        if upn:
            modlist.append(("userPrincipalName", [upn.encode("utf-8")]))
        modlist.append(
            ("userAccountControl", [str(ad.account_control(enabled)).encode("utf-8")])
        )
        if enabled and password:
            modlist.append(("unicodePwd", [ad.encode_password(password)]))
        return modlist

    def _existing_user(self, account_name: str, target_dn: str, found: LDAPData) -> Outcome:
        existing_dn, attrs = found
        enabled = None
        if attrs.get("userAccountControl"):
            enabled = ad.is_enabled(int(attrs["userAccountControl"][0]))
        if dnutil.same_dn(existing_dn, target_dn):
            self.report(f"User {account_name} already exists at {existing_dn}")
            return Outcome(Status.SAME_PLACE, dn=existing_dn, enabled=enabled)
        self.report(f"User {account_name} already exists elsewhere: {existing_dn}")
        return Outcome(
            Status.ELSEWHERE,
            dn=existing_dn,
            enabled=enabled,
            details={"requested_dn": target_dn},
        )

    def provision_user(
        self,
        target_dn: str,
        account_name: str,
        password: str | None = None,
        want_enabled: bool = False,
        search_base: str | None = None,
    ) -> Outcome:
        """
        Make sure a user called ``account_name`` exists at ``target_dn``.

        If no user with that ``sAMAccountName`` exists under the search base,
        one is created at ``target_dn`` along with any missing parent
        containers.  If one exists at ``target_dn`` already we say so.  If one
        exists somewhere else we say where, and create nothing.

        Args:
            target_dn: where the user should live
            account_name: the ``sAMAccountName``

        Keyword Args:
            password: the initial password; required if ``want_enabled``
            want_enabled: create the account enabled, with ``password`` set.
                This needs an encrypted connection.  Otherwise the account is
                created disabled and without a password.
            search_base: where to look for an existing user

        Raises:
            PathError: ``target_dn`` is malformed, or a parent container
                cannot be created
            PolicyError: ``account_name`` is invalid, or ``want_enabled`` was
                asked for without a password or over plaintext
            ConflictError: some other entry already occupies ``target_dn``
            DirectoryError: a directory operation failed

        Returns:
            :py:attr:`~adprobe.outcomes.Status.CREATED`,
            :py:attr:`~adprobe.outcomes.Status.SAME_PLACE` or
            :py:attr:`~adprobe.outcomes.Status.ELSEWHERE`.

        """
        check(validate_dn, target_dn, PathError)
        check(validate_account_name, account_name, PolicyError)
        if want_enabled:
            if not password:
                msg = f"An enabled account needs a password: {target_dn}"
                raise PolicyError(msg, dn=target_dn)
            self._require_secure("set a password", target_dn)
        base = self._search_base(target_dn, search_base)
        self.connection.ensure_live()
        self.paths.ensure_exists(dnutil.parent(target_dn))

        found = self._find(
            account_name, base, "user", "sAMAccountName", ["cn", "userAccountControl"]
        )
        if found is not None:
            return self._existing_user(account_name, target_dn, found)

        try:
            self.connection.add(
                target_dn,
                self._user_modlist(target_dn, account_name, password, want_enabled),
            )
        except DirectoryError as e:
            if e.category is not ErrorCategory.ALREADY_EXISTS:
                raise
            logger.info("adprobe.provisioner.user.raced dn=%s", target_dn)
            found = self._find(
                account_name, base, "user", "sAMAccountName", ["cn", "userAccountControl"]
            )
            if found is None:
                msg = f"{target_dn} is already taken by an entry that is not {account_name}"
                raise ConflictError(msg, existing_dn=target_dn, same_place=True) from e
            return self._existing_user(account_name, target_dn, found)
        logger.info(
            "adprobe.provisioner.user.created dn=%s enabled=%s", target_dn, want_enabled
        )
        self.report(
            f"Created user {account_name} at {target_dn} "
            f"({'enabled' if want_enabled else 'disabled'})"
        )
        return Outcome(Status.CREATED, dn=target_dn, enabled=want_enabled)

    def move_entity(self, old_dn: str, new_dn: str) -> Outcome:
        """
        Move (and possibly rename) the entry at ``old_dn`` to ``new_dn`` with
        one ModifyDN request, creating the new parent containers if needed.

        The entry keeps its identity: SID, GUID, group memberships and all
        attributes other than the naming one survive.

        Raises:
            PathError: either DN is malformed, or a new parent container
                cannot be created
            DirectoryError: the rename failed

        Returns:
            :py:attr:`~adprobe.outcomes.Status.MOVED`, or
            :py:attr:`~adprobe.outcomes.Status.SAME_PLACE` if ``old_dn`` and
            ``new_dn`` are the same DN.

        """
        check(validate_dn, old_dn, PathError)
        check(validate_dn, new_dn, PathError)
        if dnutil.same_dn(old_dn, new_dn):
            return Outcome(Status.SAME_PLACE, dn=old_dn)
        new_rdn, new_parent = dnutil.split(new_dn)
        self.paths.ensure_exists(new_parent)
        self.connection.rename(old_dn, new_rdn, new_parent)
        self.report(f"Moved {old_dn} to {new_dn}")
        return Outcome(Status.MOVED, dn=new_dn, details={"old_dn": old_dn})

    def update_user_password(
        self, dn: str, new_password: str, enable: bool = True
    ) -> Outcome:
        """
        Set the password of the user at ``dn``, and optionally enable the
        account in the same request.

        AD only accepts ``unicodePwd`` over an encrypted connection, so over
        plaintext we refuse without sending anything.

        Raises:
            PolicyError: the connection is not encrypted, the password is
                empty, or the server rejected the password
            DirectoryError: the modify failed

        Returns:
            An :py:attr:`~adprobe.outcomes.Status.UPDATED` outcome.

        """
        self._require_secure("set a password", dn)
        if not new_password:
            msg = f"Refusing to set an empty password for {dn}"
            raise PolicyError(msg, dn=dn)
        modlist = [
            (ldap.MOD_REPLACE, "unicodePwd", [ad.encode_password(new_password)]),  # type: ignore[attr-defined]
        ]
        if enable:
            modlist.append(
                (ldap.MOD_REPLACE, "userAccountControl", [str(ad.ENABLED_ACCOUNT).encode("utf-8")])  # type: ignore[attr-defined]
            )
        self.connection.modify(dn, modlist)
        self.report(f"Updated password for {dn}")
        return Outcome(Status.UPDATED, dn=dn, enabled=True if enable else None)

    def set_account_enabled(self, dn: str, enabled: bool) -> Outcome:
        self.connection.modify(
            dn,
            [(ldap.MOD_REPLACE, "userAccountControl", [str(ad.account_control(enabled)).encode("utf-8")])],  # type: ignore[attr-defined]
        )
        self.report(f"{'Enabled' if enabled else 'Disabled'} {dn}")
        return Outcome(Status.UPDATED, dn=dn, enabled=enabled)

    # -----------------------
    # Groups
    # -----------------------

    def provision_group(
        self,
        group_dn: str,
        group_name: str | None = None,
        search_base: str | None = None,
    ) -> Outcome:
        """
        Make sure a group exists at ``group_dn``.

        Groups are looked up by ``cn``.  The outcomes are the same as for
        :py:meth:`provision_user`.

        Args:
            group_dn: where the group should live

        Keyword Args:
            group_name: the ``sAMAccountName``; defaults to the group's CN
            search_base: where to look for an existing group

        Returns:
            :py:attr:`~adprobe.outcomes.Status.CREATED`,
            :py:attr:`~adprobe.outcomes.Status.SAME_PLACE` or
            :py:attr:`~adprobe.outcomes.Status.ELSEWHERE`.

        """
        check(validate_dn, group_dn, PathError)
        if group_name:
            check(validate_account_name, group_name, PolicyError)
        base = self._search_base(group_dn, search_base)
        _, cn = dnutil.leaf(group_dn)
        existing_dn = self.search_entity(cn, base, object_class="group", attribute="cn")
        if existing_dn is not None:
            if dnutil.same_dn(existing_dn, group_dn):
                self.report(f"Group {cn} already exists at {existing_dn}")
                return Outcome(Status.SAME_PLACE, dn=existing_dn)
            self.report(f"Group {cn} already exists elsewhere: {existing_dn}")
            return Outcome(
                Status.ELSEWHERE, dn=existing_dn, details={"requested_dn": group_dn}
            )
        return self.groups.create_group(group_dn, group_name=group_name)

    # -----------------------
    # Authentication
    # -----------------------

    def authenticate(
        self,
        account_name: str,
        password: str,
        search_base: str | None = None,
        filter_pattern: str = "sAMAccountName",
    ) -> Outcome:
        """
        Check a user's password the way an application doing LDAP
        authentication would: find the user's DN with a search, then bind as
        that DN.

        The bind happens on a separate connection, so our own bind is not
        disturbed.

        Args:
            account_name: what the user would type at a login prompt
            password: the password to check

        Keyword Args:
            search_base: where to look for the user; defaults to the
                provisioner's search base
            filter_pattern: a key of
                :py:data:`~adprobe.filters.COMMON_FILTERS`, or a filter
                template with ``%s`` where the account name goes

        Raises:
            AuthError: the password is empty, no user matched, or the bind
                was refused
            DirectoryError: the search failed

        Returns:
            An :py:attr:`~adprobe.outcomes.Status.AUTHENTICATED` outcome.

        """
        if not password:
            # An empty password is an anonymous bind, which always succeeds
            msg = f"Refusing to test {account_name} with an empty password"
            raise AuthError(msg)
        base = search_base or self.search_base
        if not base:
            msg = "A search base is needed to find the user"
            raise PathError(msg)
        template = COMMON_FILTERS.get(filter_pattern, filter_pattern)
        if "%s" not in template:
            msg = f"Unknown filter pattern: {filter_pattern}"
            raise PolicyError(msg)
        filterstr = format_template(template, account_name)
        results = self.connection.search(
            base,
            ldap.SCOPE_SUBTREE,  # type: ignore[attr-defined]
            filterstr,
            ["cn"],
        )
        if not results:
            msg = f"No user matches {filterstr} under {base}"
            raise AuthError(msg, category=ErrorCategory.NO_SUCH_OBJECT)
        user_dn = results[0][0]
        self.report(f"Found {account_name} at {user_dn}, binding...")
        other = self.connection.open_as(Credential(user_dn, password))
        other.close()
        logger.info("adprobe.provisioner.authenticate.success dn=%s", user_dn)
        self.report(f"Authenticated as {user_dn}")
        return Outcome(Status.AUTHENTICATED, dn=user_dn, details={"filter": filterstr})
