"""
Retry with backoff for directory searches.

Only :py:class:`vhostldap.exceptions.DirectoryUnavailable` is retried; every
other error belongs to the caller.  Sleeping blocks the resolving thread,
which is fine because every connection is resolved on its own thread.
"""

import logging
import time
from collections.abc import Callable, Iterator
from typing import TypeVar

from .exceptions import DirectoryTimeout, DirectoryUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: How many times a transiently failing search is retried.
MAX_FAILURES = 5


def backoff_delays() -> Iterator[int]:
    """
    Yield the backoff delays in seconds: 0, 1, 1, 2, 3, 5, ...

    Each delay after the first two is the sum of the two before it.
    """
    previous, current = 0, 1
    yield previous
    while True:
        yield current
        previous, current = current, previous + current


class RetryController:
    """
    Runs directory search attempts, retrying transient failures.

    One controller is made per resolution, so the retry budget is shared by
    every lookup attempt of one connection and starts from zero for the next
    connection.

    Keyword Args:
        max_retries: how many retries to allow before giving up
        sleep: the function used to sleep between attempts

    """

    def __init__(
        self,
        max_retries: int = MAX_FAILURES,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.sleep = sleep
        #: Number of transient failures seen so far
        self.failures: int = 0
        self._delays = backoff_delays()

    def run(self, attempt: Callable[[], T]) -> T:
        """
        Call ``attempt`` until it succeeds, fails permanently, or the retry
        budget runs out.

        Args:
            attempt: a callable doing one acquire/search/release cycle

        Raises:
            DirectoryTimeout: ``attempt`` kept raising
                :py:class:`DirectoryUnavailable`

        Returns:
            Whatever ``attempt`` returned.

        """
        while True:
            try:
                return attempt()
            except DirectoryUnavailable as e:
                if self.failures >= self.max_retries:
                    logger.warning(
                        "vhost_ldap.lookup.giving_up failures=%d error=%s",
                        self.failures + 1,
                        e,
                    )
                    msg = (
                        f"Directory still unavailable after {self.failures} "
                        f"retries: {e}"
                    )
                    raise DirectoryTimeout(msg) from e
                delay = next(self._delays)
                logger.warning(
                    "vhost_ldap.lookup.retry retry=%d sleep=%d error=%s",
                    self.failures,
                    delay,
                    e,
                )
                self.failures += 1
                self.sleep(delay)
