"""
Directory access for virtual host lookups.

The resolver never talks to python-ldap directly.  It is handed a
:py:class:`DirectoryCapabilities` implementation when it is built and uses
only its three operations: acquire a connection, search, release the
connection.  :py:class:`LdapDirectory` is the python-ldap backed
implementation.
"""

import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol

from vhostldap import ldap

from .exceptions import (
    DirectoryProtocolError,
    DirectoryUnavailable,
    MalformedDirectoryResponse,
    NoSuchObject,
)
from .models import DirectoryRecord
from .typing import LDAPData

logger = logging.getLogger(__name__)

#: The python-ldap errors that mean "try again later".
TRANSIENT_ERRORS = (ldap.SERVER_DOWN, ldap.TIMEOUT, ldap.CONNECT_ERROR)  # type: ignore[attr-defined]


class DirectoryCapabilities(Protocol):
    """
    The directory operations the resolution engine needs.

    Implementations raise :py:class:`~vhostldap.exceptions.DirectoryUnavailable`
    for transient failures, :py:class:`~vhostldap.exceptions.NoSuchObject` when
    nothing matched and
    :py:class:`~vhostldap.exceptions.DirectoryProtocolError` for everything
    else.
    """

    def acquire(
        self,
        hosts: tuple[str, ...],
        port: int,
        binddn: str | None,
        bindpw: str | None,
        deref: int,
        secure: bool,
    ) -> Any: ...

    def search(
        self,
        handle: Any,
        basedn: str,
        scope: int,
        attributes: tuple[str, ...],
        filterstr: str,
    ) -> DirectoryRecord: ...

    def release(self, handle: Any) -> None: ...


def _describe(error: Exception) -> str:
    """Return the human readable part of a python-ldap exception."""
    if error.args and isinstance(error.args[0], dict):
        info = error.args[0]
        desc = info.get("desc", "")
        if info.get("info"):
            return f"{desc} ({info['info']})"
        return desc
    return str(error)


def first_value(attrs: dict[str, list[bytes]], name: str) -> str | None:
    """
    Return the first value of attribute ``name`` in ``attrs``, decoded, or
    ``None`` if the entry does not have it.  Attribute names are compared
    without regard to case.

    Args:
        attrs: the attribute dictionary of a search result
        name: the attribute to look up

    Returns:
        The decoded first value, or ``None``.

    """
    lname = name.lower()
    for key, values in attrs.items():
        if key.lower() == lname and values:
            value = values[0]
            if isinstance(value, bytes):
                return value.decode("utf-8")
            return value
    return None


class LdapDirectory:
    """
    python-ldap backed :py:class:`DirectoryCapabilities`.

    Every :py:meth:`acquire` opens and binds a new connection and every
    :py:meth:`release` unbinds it, so a connection never outlives one search
    attempt.

    Keyword Args:
        timeout: network timeout in seconds
        tls_verify: ``never`` or ``always``: whether to check the server's
            certificate on ``ldaps`` connections
        tls_ca_certfile: path to the CA certificate bundle to verify against

    Raises:
        ValueError: ``tls_verify`` is not ``never`` or ``always``
        OSError: ``tls_ca_certfile`` does not exist or is not a file

    """

    def __init__(
        self,
        timeout: float = 15.0,
        tls_verify: str = "never",
        tls_ca_certfile: str | None = None,
    ) -> None:
        if tls_verify not in ("never", "always"):
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ValueError(msg)
        if tls_ca_certfile:
            ca_certfile = Path(tls_ca_certfile)
            if not ca_certfile.exists():
                msg = f"CA Certificate file does not exist: {tls_ca_certfile}"
                raise OSError(msg)
            if not ca_certfile.is_file():
                msg = f"CA Certificate file is not a file: {tls_ca_certfile}"
                raise OSError(msg)
        self.timeout = timeout
        self.tls_verify = tls_verify
        self.tls_ca_certfile = tls_ca_certfile

    @staticmethod
    def uri(hosts: tuple[str, ...], port: int, secure: bool) -> str:
        """
        Build the space separated URI list python-ldap uses to try each host
        in turn.
        """
        scheme = "ldaps" if secure else "ldap"
        return " ".join(f"{scheme}://{host}:{port}" for host in hosts)

    def acquire(
        self,
        hosts: tuple[str, ...],
        port: int,
        binddn: str | None,
        bindpw: str | None,
        deref: int,
        secure: bool,
    ) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        Open a connection to the first reachable host and bind to it.

        Args:
            hosts: the directory servers to try, in order
            port: the port to connect to
            binddn: DN to bind as; ``None`` for an anonymous bind
            bindpw: password for ``binddn``
            deref: alias dereferencing policy, one of ``ldap.DEREF_*``
            secure: use ``ldaps``

        Raises:
            DirectoryUnavailable: no server could be reached
            DirectoryProtocolError: the bind failed

        Returns:
            A bound ``LDAPObject``.

        """
        uri = self.uri(hosts, port, secure)
        ldap_object = None
        try:
            ldap_object = ldap.initialize(uri)
            ldap_object.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)  # type: ignore[attr-defined]
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)  # type: ignore[attr-defined]
            ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(self.timeout))  # type: ignore[attr-defined]
            ldap_object.set_option(ldap.OPT_DEREF, deref)  # type: ignore[attr-defined]
            if secure:
                if self.tls_verify == "always":
                    ldap_object.set_option(
                        ldap.OPT_X_TLS_REQUIRE_CERT,  # type: ignore[attr-defined]
                        ldap.OPT_X_TLS_DEMAND,  # type: ignore[attr-defined]
                    )
                else:
                    ldap_object.set_option(
                        ldap.OPT_X_TLS_REQUIRE_CERT,  # type: ignore[attr-defined]
                        ldap.OPT_X_TLS_NEVER,  # type: ignore[attr-defined]
                    )
                if self.tls_ca_certfile:
                    ldap_object.set_option(
                        ldap.OPT_X_TLS_CACERTFILE,  # type: ignore[attr-defined]
                        self.tls_ca_certfile,
                    )
                ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)  # type: ignore[attr-defined]
            ldap_object.simple_bind_s(binddn or "", bindpw or "")
        except TRANSIENT_ERRORS as e:
            self._discard(ldap_object)
            msg = f"Could not reach {uri}: {_describe(e)}"
            raise DirectoryUnavailable(msg) from e
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            self._discard(ldap_object)
            msg = f"Could not bind to {uri} as {binddn or 'anonymous'}: {_describe(e)}"
            raise DirectoryProtocolError(msg) from e
        logger.debug("vhost_ldap.directory.bind uri=%s dn=%s", uri, binddn)
        return ldap_object

    def search(
        self,
        handle: ldap.ldapobject.LDAPObject,  # type: ignore[name-defined]
        basedn: str,
        scope: int,
        attributes: tuple[str, ...],
        filterstr: str,
    ) -> DirectoryRecord:
        """
        Search for the entry matching ``filterstr`` and return its values for
        ``attributes``.

        Args:
            handle: a connection from :py:meth:`acquire`
            basedn: the DN to search from
            scope: ``ldap.SCOPE_SUBTREE`` or ``ldap.SCOPE_ONELEVEL``
            attributes: the attributes to fetch
            filterstr: the search filter

        Raises:
            DirectoryUnavailable: the server went away or timed out
            NoSuchObject: nothing matched
            DirectoryProtocolError: any other directory error
            MalformedDirectoryResponse: a value of the entry is not valid UTF-8

        Returns:
            The DN and values of the first matching entry.

        """
        try:
            data = handle.search_s(
                basedn, scope, filterstr=filterstr, attrlist=list(attributes)
            )
        except TRANSIENT_ERRORS as e:
            msg = f"Search for {filterstr} failed: {_describe(e)}"
            raise DirectoryUnavailable(msg) from e
        except ldap.NO_SUCH_OBJECT as e:  # type: ignore[attr-defined]
            msg = f"No entry matches {filterstr}"
            raise NoSuchObject(msg) from e
        except ldap.LDAPError as e:  # type: ignore[attr-defined]
            msg = f"Search for {filterstr} failed: {_describe(e)}"
            raise DirectoryProtocolError(msg) from e
        # We have to filter out any references that AD puts in
        results: list[LDAPData] = [obj for obj in data if isinstance(obj[1], dict)]
        if not results:
            msg = f"No entry matches {filterstr}"
            raise NoSuchObject(msg)
        if len(results) > 1:
            logger.debug(
                "vhost_ldap.directory.multiple_matches count=%d using=%s",
                len(results),
                results[0][0],
            )
        dn, attrs = results[0]
        try:
            values = tuple(first_value(attrs, name) for name in attributes)
        except UnicodeDecodeError as e:
            logger.error("translate failed; undecodable attribute value dn=%s: %s", dn, e)
            msg = f"Directory entry {dn} has a value that is not valid UTF-8: {e}"
            raise MalformedDirectoryResponse(msg) from e
        return DirectoryRecord(dn=dn, values=values, attributes=tuple(attributes))

    def release(self, handle: ldap.ldapobject.LDAPObject) -> None:  # type: ignore[name-defined]
        """Unbind ``handle``; errors while unbinding are ignored."""
        with suppress(ldap.LDAPError):  # type: ignore[attr-defined]
            handle.unbind_s()

    def _discard(self, ldap_object: ldap.ldapobject.LDAPObject | None) -> None:  # type: ignore[name-defined]
        """Unbind a connection that failed before it could be handed out."""
        if ldap_object is not None:
            self.release(ldap_object)
