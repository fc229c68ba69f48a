"""
Distinguished name helpers.

DNs are handled as plain strings everywhere in :py:mod:`adprobe`; these
functions parse them with :py:func:`ldap.dn.str2dn` so that escaped commas and
odd spacing are dealt with properly, instead of splitting on ``","``.
"""

import ldap.dn

from adprobe.exceptions import PathError

#: One parsed RDN: a list of (attribute, value, flags) triples
RDN = list[tuple[str, str, int]]


def parse(dn: str) -> list[RDN]:
    """
    Parse ``dn`` into its RDNs, most specific first.

    Args:
        dn: the DN to parse

    Raises:
        PathError: ``dn`` is not a syntactically valid DN

    Returns:
        The parsed RDNs.

    """
    try:
        return ldap.dn.str2dn(dn)  # type: ignore[attr-defined]
    except ldap.DECODING_ERROR as e:  # type: ignore[attr-defined]
        msg = f'Invalid DN: "{dn}"'
        raise PathError(msg, dn=dn) from e


def is_valid(dn: str) -> bool:
    return bool(dn) and ldap.dn.is_dn(dn)  # type: ignore[attr-defined]


def join(rdns: list[RDN]) -> str:
    return ldap.dn.dn2str(rdns)  # type: ignore[attr-defined]


def split(dn: str) -> tuple[str, str]:
    """
    Split ``dn`` into its leaf RDN and its parent DN.

    Args:
        dn: the DN to split

    Raises:
        PathError: ``dn`` is invalid or has no parent

    Returns:
        A tuple of (leaf RDN string, parent DN string).

    """
    rdns = parse(dn)
    if len(rdns) < 2:  # noqa: PLR2004
        msg = f'DN has no parent: "{dn}"'
        raise PathError(msg, dn=dn)
    return join(rdns[:1]), join(rdns[1:])


def parent(dn: str) -> str:
    return split(dn)[1]


def leaf(dn: str) -> tuple[str, str]:
    """
    Return the attribute type and value of the first RDN of ``dn``.

    For ``CN=Alice Smith,OU=Staff,DC=corp,DC=example`` this is
    ``("CN", "Alice Smith")``.
    """
    rdns = parse(dn)
    if not rdns:
        msg = "The root DN has no leaf"
        raise PathError(msg, dn=dn)
    attr, value, _ = rdns[0][0]
    return attr, value


def ancestors(dn: str) -> list[str]:
    """
    Return ``dn`` and all its ancestors, root-most first.

    ``OU=Staff,DC=corp,DC=example`` gives::

        ["DC=example", "DC=corp,DC=example", "OU=Staff,DC=corp,DC=example"]
    """
    rdns = parse(dn)
    return [join(rdns[i:]) for i in range(len(rdns) - 1, -1, -1)]


def normalize(dn: str) -> str:
    """
    Return a canonical form of ``dn`` for comparisons: re-serialized and
    lower-cased, so that spacing, escaping and case differences vanish.
    """
    return join(parse(dn)).lower()


def same_dn(first: str, second: str) -> bool:
    """
    Compare two DNs case-insensitively.

    ``CN=Bob,OU=Staff,DC=corp`` and ``cn=bob, ou=staff, dc=corp`` are the
    same entry as far as the directory is concerned.
    """
    return normalize(first) == normalize(second)


def domain_components(dn: str) -> list[str]:
    """Return the values of the ``DC=`` components of ``dn``, in order."""
    return [
        value
        for rdn in parse(dn)
        for attr, value, _ in rdn
        if attr.lower() == "dc"
    ]


def domain_root(dn: str) -> str | None:
    """
    Return the naming context root of ``dn``: the DN made of just its ``DC=``
    components, or ``None`` if it has none.
    """
    rdns = [
        rdn for rdn in parse(dn) if len(rdn) == 1 and rdn[0][0].lower() == "dc"
    ]
    if not rdns:
        return None
    return join(rdns)


def domain_name(dn: str) -> str | None:
    """
    Return the DNS domain implied by the ``DC=`` components of ``dn``:
    ``DC=corp,DC=example`` is ``corp.example``.
    """
    components = domain_components(dn)
    if not components:
        return None
    return ".".join(components).lower()


def escape_value(value: str) -> str:
    return ldap.dn.escape_dn_chars(value)  # type: ignore[attr-defined]
