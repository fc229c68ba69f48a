"""
Type aliases for LDAP data structures and operations.
"""

from collections.abc import Callable

DeleteModListEntry = tuple[int, str, None]
ModifyModListEntry = tuple[int, str, list[bytes]]
ModifyModList = list[DeleteModListEntry | ModifyModListEntry]
AddModlist = list[tuple[str, list[bytes]]]
LDAPData = tuple[str, dict[str, list[bytes]]]
#: A caller-supplied callback that receives human-readable progress strings.
ProgressSink = Callable[[str], None]
