"""
Virtual host lookup configuration.

This module provides :py:class:`ResolutionConfig`, the immutable settings the
resolver runs with.  A config is built once at startup, usually from the
``VHOST_LDAP`` Django setting via :py:meth:`ResolutionConfig.from_settings`,
and is then shared read-only by every connection.

Example settings::

    VHOST_LDAP = {
        "enabled": True,
        "url": "ldap://ldap1.example.com ldap2.example.com/ou=VirtualHosts,dc=example,dc=com??sub?(objectClass=scriptsVhost)",
        "binddn": None,
        "bindpw": None,
        "deref": "always",
        "fallback": "default.example.com",
        "timeout": 15.0,
        "tls_verify": "never",
    }
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap_filter import Filter

from vhostldap import ldap

from .typing import HostList

logger = logging.getLogger(__name__)

#: The keys we understand in ``settings.VHOST_LDAP``.
DEFAULT_NAMES = (
    "enabled",
    "url",
    "binddn",
    "bindpw",
    "deref",
    "fallback",
    "timeout",
    "tls_verify",
    "tls_ca_certfile",
)

#: The filter used when the URL does not supply one.
DEFAULT_FILTER = "objectClass=scriptsVhost"

#: Alias dereferencing policy names to python-ldap constants.
DEREF_POLICIES: dict[str, int] = {
    "never": ldap.DEREF_NEVER,  # type: ignore[attr-defined]
    "searching": ldap.DEREF_SEARCHING,  # type: ignore[attr-defined]
    "finding": ldap.DEREF_FINDING,  # type: ignore[attr-defined]
    "always": ldap.DEREF_ALWAYS,  # type: ignore[attr-defined]
}

LDAP_PORT = 389
LDAPS_PORT = 636


def parse_deref(value: str) -> int:
    """
    Convert an alias dereferencing policy name to its python-ldap constant.

    Accepts ``never``, ``searching``, ``finding`` and ``always``, and also
    ``off`` for ``never`` and ``on`` for ``always`` in any case.

    Args:
        value: the policy name

    Raises:
        ImproperlyConfigured: ``value`` is not a known policy

    Returns:
        One of the ``ldap.DEREF_*`` constants.

    """
    if value.lower() == "off":
        value = "never"
    elif value.lower() == "on":
        value = "always"
    try:
        return DEREF_POLICIES[value]
    except KeyError as e:
        msg = (
            f"Unrecognized value {value!r} for VHOST_LDAP['deref']; must be one of "
            '"never", "searching", "finding", or "always"'
        )
        raise ImproperlyConfigured(msg) from e


def parse_hostport(hostport: str, default_port: int) -> tuple[HostList, int]:
    """
    Split the host part of an LDAP URL into a list of hosts and a port.

    The host part may be a space separated list of ``host[:port]`` items.  The
    first explicit port wins; without one ``default_port`` is used.  An empty
    host part means ``localhost``.

    Args:
        hostport: the host part of the URL
        default_port: the port to use if none is given

    Returns:
        A tuple of host names and the port.

    """
    hosts: list[str] = []
    port: int | None = None
    for item in hostport.split():
        host, sep, maybe_port = item.rpartition(":")
        if sep and maybe_port.isdigit() and not host.endswith(":"):
            hosts.append(host)
            if port is None:
                port = int(maybe_port)
        else:
            hosts.append(item)
    if not hosts:
        hosts = ["localhost"]
    return tuple(hosts), port if port is not None else default_port


def validate_filter(searchfilter: str) -> str:
    """
    Make sure ``searchfilter`` (without its surrounding parentheses) parses
    as an LDAP filter.

    Args:
        searchfilter: the filter to check

    Raises:
        ImproperlyConfigured: the filter is not valid

    Returns:
        ``searchfilter`` unchanged.

    """
    try:
        Filter.parse(f"({searchfilter})")
    except Exception as e:
        msg = f"VHOST_LDAP url has an invalid filter {searchfilter!r}: {e}"
        raise ImproperlyConfigured(msg) from e
    return searchfilter


@dataclass(frozen=True)
class ResolutionConfig:
    """
    Configuration for resolving virtual hosts from the directory.

    Instances are immutable; use :py:meth:`with_url`,
    :py:func:`dataclasses.replace` or :py:meth:`merge` to derive new ones.
    """

    #: ``True`` or ``False`` once set; ``None`` means "inherit from parent"
    enabled: bool | None = None
    #: The directory URL, as configured
    url: str | None = None
    #: The directory servers to try, in order
    hosts: HostList = ()
    #: The port of the directory servers
    port: int = LDAP_PORT
    #: The DN to search from
    basedn: str = ""
    #: ``ldap.SCOPE_SUBTREE`` or ``ldap.SCOPE_ONELEVEL``
    scope: int = ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]
    #: The filter that selects virtual host entries, without parentheses
    filter: str = DEFAULT_FILTER
    #: The DN to bind as; ``None`` for an anonymous bind
    binddn: str | None = None
    #: The password for :py:attr:`binddn`
    bindpw: str | None = dataclasses.field(default=None, repr=False)
    #: Alias dereferencing policy; ``None`` means "not set", which behaves
    #: like ``ldap.DEREF_ALWAYS``
    deref: int | None = None
    #: Use ``ldaps``
    secure: bool = False
    #: The hostname to look up when nothing matches the requested one
    fallback: str | None = None
    #: Network timeout for directory connections, in seconds
    timeout: float = 15.0
    #: ``never`` or ``always``: whether to verify the server certificate
    tls_verify: str = "never"
    #: CA certificate bundle used to verify the server certificate
    tls_ca_certfile: str | None = None

    @property
    def has_url(self) -> bool:
        return self.url is not None

    @property
    def is_active(self) -> bool:
        """``True`` if lookups are switched on and we know where to look."""
        return bool(self.enabled) and self.has_url

    @property
    def deref_policy(self) -> int:
        if self.deref is None:
            return ldap.DEREF_ALWAYS  # type: ignore[attr-defined]
        return self.deref

    def with_url(self, url: str) -> "ResolutionConfig":
        """
        Return a copy of this config with the directory settings from ``url``.

        ``url`` is an RFC 2255 LDAP URL of the form
        ``ldap[s]://host[:port] [host[:port] ...]/basedn[?attrib[?scope[?filter]]]``.
        If this config already has hosts, the hosts from ``url`` are tried
        first.

        Args:
            url: the LDAP URL

        Raises:
            ImproperlyConfigured: ``url`` is not a valid LDAP URL, or its
                filter is not a valid LDAP filter

        Returns:
            A new :py:class:`ResolutionConfig`.

        """
        logger.debug("vhost_ldap.config.url_parse url=%s", url)
        if not ldap.isLDAPUrl(url):
            msg = f"VHOST_LDAP url {url!r} does not begin with ldap:// or ldaps://"
            raise ImproperlyConfigured(msg)
        try:
            urld = ldap.LDAPUrl(url)
        except ValueError as e:
            msg = f"Could not parse VHOST_LDAP url {url!r}: {e}"
            raise ImproperlyConfigured(msg) from e

        secure = urld.urlscheme == "ldaps"
        hosts, port = parse_hostport(
            urld.hostport or "", LDAPS_PORT if secure else LDAP_PORT
        )
        if self.hosts:
            hosts = hosts + self.hosts
        scope = (
            ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
            if urld.scope == ldap.SCOPE_ONELEVEL  # type: ignore[attr-defined]
            else ldap.SCOPE_SUBTREE  # type: ignore[attr-defined]
        )
        searchfilter = DEFAULT_FILTER
        if urld.filterstr:
            searchfilter = urld.filterstr
            if searchfilter.startswith("("):
                # The parentheses are put back when the search filter is built.
                searchfilter = searchfilter[1:-1]
            validate_filter(searchfilter)
        logger.debug(
            "vhost_ldap.config.url_parse hosts=%s port=%d basedn=%s scope=%s "
            "filter=%s secure=%s",
            " ".join(hosts),
            port,
            urld.dn,
            "onelevel" if scope == ldap.SCOPE_ONELEVEL else "subtree",  # type: ignore[attr-defined]
            searchfilter,
            secure,
        )
        return dataclasses.replace(
            self,
            url=url,
            hosts=hosts,
            port=port,
            basedn=urld.dn or "",
            scope=scope,
            filter=searchfilter,
            secure=secure,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolutionConfig":
        """
        Build a config from a ``VHOST_LDAP`` style dictionary.

        ``url`` may be a single URL or a list of them; each later URL puts its
        hosts in front of the ones before it.

        Args:
            data: the settings dictionary

        Raises:
            ImproperlyConfigured: a key is unknown, a value is invalid, or
                lookups are enabled without a URL

        Returns:
            A new :py:class:`ResolutionConfig`.

        """
        unknown = set(data) - set(DEFAULT_NAMES)
        if unknown:
            msg = (
                "settings.VHOST_LDAP has unknown keys: "
                f"{', '.join(sorted(unknown))}"
            )
            raise ImproperlyConfigured(msg)
        config = cls()
        urls = data.get("url") or []
        if isinstance(urls, str):
            urls = [urls]
        for url in urls:
            config = config.with_url(url)
        tls_verify = data.get("tls_verify", "never")
        if tls_verify not in ("never", "always"):
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ImproperlyConfigured(msg)
        deref = data.get("deref")
        config = dataclasses.replace(
            config,
            enabled=data.get("enabled"),
            binddn=data.get("binddn"),
            bindpw=data.get("bindpw"),
            deref=parse_deref(deref) if deref is not None else None,
            fallback=data.get("fallback"),
            timeout=float(data.get("timeout", 15.0)),
            tls_verify=tls_verify,
            tls_ca_certfile=data.get("tls_ca_certfile"),
        )
        if config.enabled and not config.has_url:
            msg = "settings.VHOST_LDAP is enabled but has no 'url'"
            raise ImproperlyConfigured(msg)
        return config

    @classmethod
    def from_settings(cls) -> "ResolutionConfig":
        """
        Build a config from ``settings.VHOST_LDAP``.  If the setting does not
        exist, the returned config is disabled.

        Raises:
            ImproperlyConfigured: ``settings.VHOST_LDAP`` is invalid

        Returns:
            A new :py:class:`ResolutionConfig`.

        """
        data = getattr(settings, "VHOST_LDAP", None)
        if data is None:
            logger.debug("vhost_ldap.config.missing setting=VHOST_LDAP")
            return cls(enabled=False)
        if not isinstance(data, dict):
            msg = "settings.VHOST_LDAP must be a dictionary"
            raise ImproperlyConfigured(msg)
        return cls.from_dict(data)

    @classmethod
    def merge(
        cls, parent: "ResolutionConfig", child: "ResolutionConfig"
    ) -> "ResolutionConfig":
        """
        Combine a server's config with the config of the server it inherits
        from.

        The directory URL and everything parsed from it come as a block from
        whichever of the two has a URL, preferring ``child``.  ``enabled``,
        ``deref``, the bind credentials and the fallback host come from
        ``child`` when it sets them and from ``parent`` otherwise.

        Args:
            parent: the outer server's config
            child: the inner server's config

        Returns:
            A new :py:class:`ResolutionConfig`.

        """
        url_block = child if child.has_url else parent
        return cls(
            enabled=child.enabled if child.enabled is not None else parent.enabled,
            url=url_block.url,
            hosts=url_block.hosts,
            port=url_block.port,
            basedn=url_block.basedn,
            scope=url_block.scope,
            filter=url_block.filter,
            secure=url_block.secure,
            deref=child.deref if child.deref is not None else parent.deref,
            binddn=child.binddn if child.binddn else parent.binddn,
            bindpw=child.bindpw if child.bindpw else parent.bindpw,
            fallback=child.fallback if child.fallback else parent.fallback,
            timeout=url_block.timeout,
            tls_verify=url_block.tls_verify,
            tls_ca_certfile=url_block.tls_ca_certfile,
        )
