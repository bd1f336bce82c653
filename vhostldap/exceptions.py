"""
Virtual host resolution errors.

Every failure the resolution engine can report derives from
:py:class:`VhostLDAPError` and carries the HTTP status the connection should
be answered with.  :py:meth:`vhostldap.resolver.VhostResolver.resolve` is the
only place these are turned into status codes; everything below it raises.
"""

from http import HTTPStatus


class VhostLDAPError(Exception):
    """Base class for all virtual host resolution errors."""

    #: The HTTP status reported to the caller for this error.
    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR


class DirectoryError(VhostLDAPError):
    """Base class for errors reported by the directory layer."""


class DirectoryUnavailable(DirectoryError):
    """
    The directory server is down, timed out or refused the connection.

    This is the only transient failure: the retry controller retries it with
    backoff and turns it into :py:class:`DirectoryTimeout` once the retry
    budget is spent.
    """

    status = HTTPStatus.GATEWAY_TIMEOUT


class DirectoryTimeout(DirectoryError):
    """Raised when a search kept failing transiently after every retry."""

    status = HTTPStatus.GATEWAY_TIMEOUT


class NoSuchObject(DirectoryError):
    """No directory entry matched the search filter for one lookup attempt."""

    status = HTTPStatus.BAD_REQUEST


class DirectoryProtocolError(DirectoryError):
    """Any other directory failure, e.g. a failed bind."""


class FilterTooLong(VhostLDAPError):
    """The composed search filter does not fit the filter buffer."""


class VhostNotFound(VhostLDAPError):
    """No entry matched the hostname, its wildcards, or the fallback host."""

    status = HTTPStatus.BAD_REQUEST


class MalformedDirectoryResponse(VhostLDAPError):
    """The matching directory entry lacks attributes we need."""


class VirtualHostInitError(VhostLDAPError):
    """The runtime could not create a new virtual host server object."""


class DirectiveError(VhostLDAPError):
    """
    The runtime refused to apply a configuration directive.

    Args:
        message: what went wrong

    Keyword Args:
        status: the status the runtime reports for this failure

    """

    def __init__(
        self, message: str, status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    ) -> None:
        super().__init__(message)
        self.status = status
