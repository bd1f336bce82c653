"""
Virtual host resolution.

:py:class:`VhostResolver` is the entry point the request pipeline calls when a
connection arrives: it looks the requested hostname up in the directory and
hands back a server object configured for that virtual host.

Example::

    runtime = VirtualHostRuntime()
    resolver = VhostResolver.from_settings(runtime)

    resolution = resolver.resolve(connection, "foo.example.com", default_server)
    if resolution.resolved:
        server = resolution.server
    elif resolution.declined:
        server = default_server
    else:
        respond_with(resolution.status)
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from http import HTTPStatus
from typing import Any

from .directives import VhostConfiguration
from .directory import DirectoryCapabilities, LdapDirectory
from .exceptions import FilterTooLong, NoSuchObject, VhostLDAPError, VhostNotFound
from .fallback import HostnameCandidates
from .filters import build_vhost_filter
from .models import ATTRIBUTES, DirectoryRecord, VhostRecord
from .options import ResolutionConfig
from .retry import MAX_FAILURES, RetryController
from .server import Reconfigurator, ServerRuntime

logger = logging.getLogger(__name__)

#: The virtual host was resolved; the caller should use the new server.
OK = 0
#: Directory lookups are off for this server; the caller keeps its own.
DECLINED = -1


@dataclass(frozen=True)
class Resolution:
    """The outcome of :py:meth:`VhostResolver.resolve`."""

    #: :py:data:`OK`, :py:data:`DECLINED`, or an HTTP error status
    status: int
    #: The server to serve the connection with: the new one when
    #: :py:attr:`resolved`, otherwise the caller's own
    server: Any
    #: The error that stopped the resolution, if any
    error: VhostLDAPError | None = None

    @property
    def resolved(self) -> bool:
        return self.status == OK

    @property
    def declined(self) -> bool:
        return self.status == DECLINED


class VhostResolver:
    """
    Resolves hostnames to virtual hosts.

    The resolver keeps no per-connection state, so one instance can serve any
    number of threads at once.

    Args:
        config: the process wide lookup configuration
        directory: the directory operations to search with
        runtime: the host runtime that builds server objects

    Keyword Args:
        sleep: the function used to sleep between retries
        max_retries: how many times to retry a transiently failing search

    """

    def __init__(
        self,
        config: ResolutionConfig,
        directory: DirectoryCapabilities,
        runtime: ServerRuntime,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = MAX_FAILURES,
    ) -> None:
        self.config = config
        self.directory = directory
        self.runtime = runtime
        self.reconfigurator = Reconfigurator(runtime)
        self.sleep = sleep
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls, runtime: ServerRuntime, **kwargs) -> "VhostResolver":
        """
        Build a resolver using ``settings.VHOST_LDAP`` and a
        :py:class:`~vhostldap.directory.LdapDirectory`.

        Args:
            runtime: the host runtime
            **kwargs: passed on to the constructor

        Raises:
            ImproperlyConfigured: ``settings.VHOST_LDAP`` is invalid

        Returns:
            A new :py:class:`VhostResolver`.

        """
        config = ResolutionConfig.from_settings()
        directory = LdapDirectory(
            timeout=config.timeout,
            tls_verify=config.tls_verify,
            tls_ca_certfile=config.tls_ca_certfile,
        )
        return cls(config, directory, runtime, **kwargs)

    def config_for(self, server: Any) -> ResolutionConfig:
        """
        Return the configuration in effect for ``server``: its own settings
        layered over the resolver's.
        """
        server_config = self.runtime.get_config(server)
        if server_config is None:
            return self.config
        return ResolutionConfig.merge(self.config, server_config)

    def resolve(self, connection: Any, hostname: str | None, server: Any) -> Resolution:
        """
        Find the virtual host for ``hostname`` and build its server object.

        Args:
            connection: the client connection; only used in log messages
            hostname: the hostname the client asked for; may be empty
            server: the server object the connection arrived on

        Returns:
            A :py:class:`Resolution`.  On success its ``server`` replaces the
            caller's; otherwise the caller keeps ``server`` and either falls
            back to its static configuration (declined) or answers with the
            error status.

        """
        config = self.config_for(server)
        if not config.is_active:
            return Resolution(status=DECLINED, server=server)
        if not config.hosts:
            logger.warning("translate: no directory hosts configured conn=%s", connection)
            return Resolution(status=HTTPStatus.INTERNAL_SERVER_ERROR, server=server)
        try:
            record = self.lookup(hostname, config)
            configuration = VhostConfiguration.from_record(record)
            new_server = self.reconfigurator.apply(configuration, server)
        except VhostLDAPError as e:
            logger.warning(
                "translate failed; virtual host %s [%s] conn=%s status=%d",
                hostname,
                e,
                connection,
                e.status,
            )
            return Resolution(status=e.status, server=server, error=e)
        logger.info(
            "vhost_ldap.resolve.success hostname=%s server_name=%s dn=%s conn=%s",
            hostname,
            record.name,
            record.dn,
            connection,
        )
        return Resolution(status=OK, server=new_server)

    def lookup(self, hostname: str | None, config: ResolutionConfig) -> VhostRecord:
        """
        Find the directory entry for ``hostname``, walking the wildcard and
        fallback chain until something matches.

        Args:
            hostname: the requested hostname; may be empty
            config: the lookup configuration to use

        Raises:
            VhostNotFound: nothing matched
            DirectoryTimeout: the directory stayed unavailable
            DirectoryProtocolError: the directory reported an error
            MalformedDirectoryResponse: the matching entry is unusable

        Returns:
            The :py:class:`~vhostldap.models.VhostRecord` for the first match.

        """
        retry = RetryController(max_retries=self.max_retries, sleep=self.sleep)
        candidates = HostnameCandidates(hostname, fallback=config.fallback)
        for attempt in candidates:
            logger.debug(
                "translating hostname [%s] attempt=%d state=%s",
                attempt.hostname,
                attempt.ordinal,
                attempt.state.value,
            )
            try:
                searchfilter = build_vhost_filter(config.filter, attempt.hostname)
            except FilterTooLong as e:
                logger.warning("translate: %s", e)
                continue
            try:
                record = retry.run(partial(self._search, config, searchfilter))
            except NoSuchObject:
                continue
            return VhostRecord.from_directory(record)
        logger.warning(
            "translate: virtual host %s not found",
            candidates.last_hostname or hostname,
        )
        msg = f"No virtual host found for {hostname!r}"
        raise VhostNotFound(msg)

    def _search(self, config: ResolutionConfig, searchfilter: str) -> DirectoryRecord:
        """
        One acquire, search, release cycle.  The connection is always released
        before returning, so it is never held across a retry sleep.
        """
        handle = self.directory.acquire(
            hosts=config.hosts,
            port=config.port,
            binddn=config.binddn,
            bindpw=config.bindpw,
            deref=config.deref_policy,
            secure=config.secure,
        )
        try:
            return self.directory.search(
                handle,
                basedn=config.basedn,
                scope=config.scope,
                attributes=ATTRIBUTES,
                filterstr=searchfilter,
            )
        finally:
            self.directory.release(handle)
