"""
Search filter construction.

Values that come from the user (account names, DNs) are always escaped before
they reach a filter string, so a name like ``a*`` or ``x)(objectClass=*`` is
matched literally.  Templates are filled with
:py:func:`ldap.filter.filter_format`; composed filters are built with
:py:class:`ldap_filter.Filter`, which escapes values itself, so never feed it
an already escaped filter.
"""

import ldap.filter
from ldap_filter import Filter

#: Filter templates for finding an account by what the user typed, keyed by
#: the attribute they match on.
COMMON_FILTERS: dict[str, str] = {
    "sAMAccountName": "(&(objectClass=user)(sAMAccountName=%s))",
    "userPrincipalName": "(&(objectClass=user)(userPrincipalName=%s))",
    "mail": "(&(objectClass=user)(mail=%s))",
    "distinguishedName": "(&(objectClass=user)(distinguishedName=%s))",
    "cn": "(&(objectClass=user)(cn=%s))",
}


def format_template(template: str, value: str) -> str:
    """
    Fill every ``%s`` in ``template`` with the escaped ``value``.
    """
    return ldap.filter.filter_format(template, [value] * template.count("%s"))  # type: ignore[attr-defined]


def entity_filter(object_class: str, attribute: str, value: str) -> str:
    """
    Build ``(&(objectClass=<object_class>)(<attribute>=<value>))``.

    Args:
        object_class: the object class the entry must have
        attribute: the naming attribute to test
        value: the value to match exactly; it is escaped for us

    Returns:
        The filter string.

    """
    return (
        Filter.AND(
            [
                Filter.attribute("objectClass").equal_to(object_class),
                Filter.attribute(attribute).equal_to(value),
            ]
        )
        .simplify()
        .to_string()
    )
