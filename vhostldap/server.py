"""
Server objects and the reconfigurator.

The host runtime owns server objects; the resolution engine only asks it to
make a new virtual host from a template, apply directives to it, and finalize
it.  :py:class:`ServerRuntime` is that contract.  :py:class:`Reconfigurator`
applies a complete :py:class:`~vhostldap.directives.VhostConfiguration` through
it.

:py:class:`VirtualHostRuntime` is an in-process runtime whose server objects
are :py:class:`VirtualHost` instances.  It understands exactly the directives
the engine issues.
"""

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

from .directives import Directive, VhostConfiguration, split_args
from .exceptions import DirectiveError, VirtualHostInitError
from .options import ResolutionConfig

logger = logging.getLogger(__name__)


class ServerRuntime(Protocol):
    """The host runtime operations the resolution engine needs."""

    def init_virtual_host(self, template: Any) -> Any:
        """Make a new, unconfigured virtual host based on ``template``."""
        ...

    def apply_directive(self, server: Any, directive: Directive) -> None:
        """
        Apply one directive to ``server`` exactly as if it had been read from
        a configuration file.  Raises :py:class:`DirectiveError` on failure.
        """
        ...

    def finalize(self, server: Any, template: Any) -> None:
        """Fill in whatever ``server`` did not set from ``template``."""
        ...

    def get_config(self, server: Any) -> ResolutionConfig | None:
        """Return the lookup config in effect for ``server``, if it has one."""
        ...


class Reconfigurator:
    """
    Turns a :py:class:`~vhostldap.directives.VhostConfiguration` into a new
    server object.

    Args:
        runtime: the host runtime

    """

    def __init__(self, runtime: ServerRuntime) -> None:
        self.runtime = runtime

    def apply(self, configuration: VhostConfiguration, template: Any) -> Any:
        """
        Create a new virtual host from ``template`` and apply
        ``configuration`` to it.

        Nothing is rolled back if a directive fails: the new server object is
        simply never handed out.

        Args:
            configuration: the directives to apply
            template: the server object the connection arrived on

        Raises:
            VirtualHostInitError: the runtime could not create the virtual host
            DirectiveError: a directive failed

        Returns:
            The new, fully configured server object.

        """
        try:
            server = self.runtime.init_virtual_host(template)
        except VirtualHostInitError:
            raise
        except Exception as e:
            logger.error("Could not initialize a new VirtualHost: %s", e)
            msg = f"Could not initialize a new VirtualHost: {e}"
            raise VirtualHostInitError(msg) from e
        for directive in configuration:
            logger.debug("vhost_ldap.reconfigure.directive %s", directive)
            self.runtime.apply_directive(server, directive)
        self.runtime.finalize(server, template)
        return server


# ========================================
# The in-process runtime
# ========================================


@dataclass
class VirtualHost:
    """
    A server object: the configuration a connection is served with.
    """

    #: The ``ServerName``
    server_name: str | None = None
    #: The ``DocumentRoot``
    document_root: str | None = None
    #: ``ServerAdmin``
    server_admin: str | None = None
    #: The port the server listens on
    port: int | None = None
    #: Request timeout in seconds
    timeout: int | None = None
    #: Whether keep-alive is enabled
    keep_alive: bool | None = None
    #: ``SuexecUserGroup`` user, e.g. ``#1234``
    suexec_user: str | None = None
    #: ``SuexecUserGroup`` group, e.g. ``#5678``
    suexec_group: str | None = None
    #: ``UserDir`` directories under each user's home
    userdirs: list[str] = dataclasses.field(default_factory=list)
    #: ``UserDir disabled`` with no user list: ``~user`` is off for everyone
    userdir_disabled: bool = False
    #: Users for whom ``~user`` is explicitly enabled
    userdir_enabled: list[str] = dataclasses.field(default_factory=list)
    #: Directory lookup configuration for this server
    vhost_ldap: ResolutionConfig = dataclasses.field(default_factory=ResolutionConfig)
    #: ``True`` for servers made by :py:meth:`VirtualHostRuntime.init_virtual_host`
    is_virtual: bool = False
    #: Every directive applied to this server, in order
    directives: list[Directive] = dataclasses.field(default_factory=list)


class VirtualHostRuntime:
    """
    :py:class:`ServerRuntime` for :py:class:`VirtualHost` objects.

    Each directive has a handler registered in :py:attr:`commands` along with
    the number of arguments it accepts.
    """

    #: Fields :py:meth:`finalize` copies from the template when unset
    INHERITED: ClassVar[tuple[str, ...]] = (
        "server_admin",
        "port",
        "timeout",
        "keep_alive",
    )

    def __init__(self) -> None:
        #: directive name -> (handler, minimum args, maximum args)
        self.commands: dict[
            str, tuple[Callable[[VirtualHost, list[str]], None], int, int]
        ] = {
            "ServerName": (self._server_name, 1, 1),
            "DocumentRoot": (self._document_root, 1, 1),
            "SuexecUserGroup": (self._suexec_user_group, 2, 2),
            "UserDir": (self._userdir, 1, 256),
            "VhostLDAPEnabled": (self._vhost_ldap_enabled, 1, 1),
        }

    def init_virtual_host(self, template: VirtualHost) -> VirtualHost:
        return VirtualHost(vhost_ldap=template.vhost_ldap, is_virtual=True)

    def apply_directive(self, server: VirtualHost, directive: Directive) -> None:
        """
        Parse the arguments of ``directive`` and run its handler on ``server``.

        Args:
            server: the server to configure
            directive: the directive to apply

        Raises:
            DirectiveError: the directive is unknown, has the wrong number of
                arguments, or its handler rejected the arguments

        """
        try:
            handler, min_args, max_args = self.commands[directive.name]
        except KeyError as e:
            msg = (
                f"Invalid command '{directive.name}', perhaps misspelled or "
                "defined by a module not included in the server configuration"
            )
            raise DirectiveError(msg) from e
        args = split_args(directive.args)
        if not min_args <= len(args) <= max_args:
            msg = f"{directive.name} takes {min_args} to {max_args} arguments: {args}"
            raise DirectiveError(msg)
        handler(server, args)
        server.directives.append(directive)

    def finalize(self, server: VirtualHost, template: VirtualHost) -> None:
        for name in self.INHERITED:
            if getattr(server, name) is None:
                setattr(server, name, getattr(template, name))

    def get_config(self, server: VirtualHost) -> ResolutionConfig | None:
        return server.vhost_ldap

    # Directive handlers

    def _server_name(self, server: VirtualHost, args: list[str]) -> None:
        if "://" in args[0]:
            msg = f"ServerName must not include a scheme: {args[0]}"
            raise DirectiveError(msg)
        server.server_name = args[0]

    def _document_root(self, server: VirtualHost, args: list[str]) -> None:
        if not args[0].startswith("/"):
            msg = f"DocumentRoot must be an absolute path: {args[0]}"
            raise DirectiveError(msg)
        server.document_root = args[0].rstrip("/") or "/"

    def _suexec_user_group(self, server: VirtualHost, args: list[str]) -> None:
        for value in args:
            if value.startswith("#") and not value[1:].isdigit():
                msg = f"SuexecUserGroup: invalid numeric id {value}"
                raise DirectiveError(msg)
        server.suexec_user, server.suexec_group = args

    def _userdir(self, server: VirtualHost, args: list[str]) -> None:
        keyword = args[0].lower()
        if keyword in ("enabled", "disabled"):
            users = args[1:]
            if keyword == "disabled" and not users:
                server.userdir_disabled = True
            elif keyword == "enabled" and not users:
                msg = "UserDir \"enable\" keyword requires a list of usernames"
                raise DirectiveError(msg)
            elif keyword == "enabled":
                server.userdir_enabled.extend(users)
            return
        server.userdirs.extend(args)

    def _vhost_ldap_enabled(self, server: VirtualHost, args: list[str]) -> None:
        flag = args[0].lower()
        if flag not in ("on", "off"):
            msg = "VhostLDAPEnabled must be On or Off"
            raise DirectiveError(msg)
        server.vhost_ldap = dataclasses.replace(server.vhost_ldap, enabled=flag == "on")
