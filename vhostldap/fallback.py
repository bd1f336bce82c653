"""
The hostname fallback chain.

When the directory has no entry for the requested hostname we widen the search
one label at a time using wildcard entries, and when those run out we try the
configured fallback host once.  :py:class:`HostnameCandidates` produces the
hostnames to try, in order, as :py:class:`LookupAttempt` objects.
"""

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class LookupState(enum.Enum):
    """Where in the fallback chain a lookup attempt came from."""

    #: The hostname exactly as the client asked for it
    EXACT = "exact"
    #: A wildcard reduction of the hostname
    WILDCARD = "wildcard"
    #: The configured fallback hostname
    FALLBACK = "fallback"
    #: Nothing left to try
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class LookupAttempt:
    """One hostname to search for."""

    #: The hostname to put in the search filter
    hostname: str
    #: 1 for the first attempt of a resolution, 2 for the next, ...
    ordinal: int
    #: The chain state that produced this attempt
    state: LookupState

    @property
    def is_fallback(self) -> bool:
        return self.state is LookupState.FALLBACK


def wildcard_for(hostname: str) -> str | None:
    """
    Return the next wildcard to try after ``hostname`` missed, or ``None`` if
    ``hostname`` cannot be reduced any further.

    ``a.b.example.com`` becomes ``*.b.example.com``, which becomes
    ``*.example.com``, then ``*.com``, then ``*``.

    Args:
        hostname: the hostname that was not found

    Returns:
        The wildcard hostname, or ``None``.

    """
    if hostname == "*" or "." not in hostname:
        return None
    hostname = hostname.removeprefix("*.")
    _, dot, rest = hostname.partition(".")
    return f"*{dot}{rest}"


class HostnameCandidates:
    """
    A lazy, finite, non-restartable sequence of lookup attempts for one
    resolution.

    The consumer asks for the next attempt only after the previous one was not
    found; each call to :py:func:`next` moves the chain along one step.  The
    fallback hostname is tried at most once.

    Args:
        hostname: the hostname the client asked for; may be empty or ``None``

    Keyword Args:
        fallback: the configured fallback hostname, if any

    """

    def __init__(self, hostname: str | None, fallback: str | None = None) -> None:
        self.hostname = hostname
        self.fallback = fallback
        self.state: LookupState | None = None
        self.ordinal: int = 0
        self._current: str | None = None
        self._fallback_used = False

    def __iter__(self) -> "HostnameCandidates":
        return self

    def __next__(self) -> LookupAttempt:
        hostname, state = self._advance()
        self.state = state
        if state is LookupState.EXHAUSTED:
            raise StopIteration
        self._current = hostname
        self.ordinal += 1
        return LookupAttempt(hostname=hostname, ordinal=self.ordinal, state=state)  # type: ignore[arg-type]

    def _advance(self) -> tuple[str | None, LookupState]:
        if self.state is None:
            if self.hostname:
                return self.hostname, LookupState.EXACT
            return self._to_fallback()
        if self.state in (LookupState.EXACT, LookupState.WILDCARD):
            wildcard = wildcard_for(self._current or "")
            if wildcard is not None:
                logger.info(
                    "virtual host not found, trying wildcard %s", wildcard
                )
                return wildcard, LookupState.WILDCARD
            return self._to_fallback()
        return None, LookupState.EXHAUSTED

    def _to_fallback(self) -> tuple[str | None, LookupState]:
        if self.fallback and not self._fallback_used:
            self._fallback_used = True
            logger.info(
                "virtual host %s not found, trying fallback %s",
                self._current or self.hostname,
                self.fallback,
            )
            return self.fallback, LookupState.FALLBACK
        return None, LookupState.EXHAUSTED

    @property
    def last_hostname(self) -> str | None:
        """The hostname of the most recent attempt."""
        return self._current
