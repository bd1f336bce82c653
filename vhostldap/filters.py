"""
Search filter construction for virtual host lookups.

The hostname comes straight from the client, so it is escaped with the
directory protocol's own filter escaping (RFC 4515) before it is placed in
the filter.  This is not the same escaping as
:py:func:`vhostldap.directives.escape`, which is for directive arguments.
"""

from vhostldap import ldap

from .exceptions import FilterTooLong

#: Size of the historical filter buffer, including its terminating NUL.
FILTER_LENGTH = 8192

#: The search filter for a virtual host; ``{filter}`` is the configured filter
#: without its surrounding parentheses.
VHOST_FILTER = "(&({filter})(|(scriptsVhostName={host})(scriptsVhostAlias={host})))"


def escape_filter_value(hostname: str) -> str:
    """
    Escape ``hostname`` for use as an assertion value in a search filter.

    ``*``, ``(``, ``)``, ``\\`` and NUL are replaced by their ``\\XX`` hex
    escapes, so a wildcard hostname like ``*.example.com`` matches the literal
    value stored in the directory rather than acting as a substring filter.

    Args:
        hostname: the hostname to escape

    Returns:
        The escaped hostname.

    """
    return ldap.escape_filter_chars(hostname)


def build_vhost_filter(
    config_filter: str, hostname: str, limit: int = FILTER_LENGTH
) -> str:
    """
    Build the search filter that finds the entry for ``hostname``.

    Args:
        config_filter: the configured filter, without surrounding parentheses
        hostname: the (unescaped) hostname to look for

    Keyword Args:
        limit: the size of the filter buffer in bytes

    Raises:
        FilterTooLong: the filter would not fit in ``limit`` bytes

    Returns:
        The complete search filter.

    """
    escaped = escape_filter_value(hostname)
    searchfilter = VHOST_FILTER.format(filter=config_filter, host=escaped)
    # The buffer has to hold the terminating NUL too.
    if len(searchfilter.encode("utf-8")) >= limit:
        msg = (
            f"Search filter for hostname {hostname[:64]!r}... is longer than "
            f"{limit - 1} bytes"
        )
        raise FilterTooLong(msg)
    return searchfilter
