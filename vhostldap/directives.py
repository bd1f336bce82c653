"""
Configuration directives for a resolved virtual host.

A :py:class:`VhostConfiguration` is the complete, immutable list of
directives that turn a fresh server object into the virtual host described
by a :py:class:`~vhostldap.models.VhostRecord`.  It is built (and validated)
in full before anything is applied to a server object.

Directory values end up inside single-quoted directive arguments, so they are
run through :py:func:`escape` first; :py:func:`split_args` is the inverse
used by the runtime when it reads the arguments back.
"""

import logging
import re
from dataclasses import dataclass

from .exceptions import MalformedDirectoryResponse
from .models import USERDIR, VhostRecord

logger = logging.getLogger(__name__)

_ESCAPE_RE = re.compile(r"['\\]")


def escape(value: str) -> str:
    """
    Backslash-escape every ``'`` and ``\\`` in ``value`` so it can be placed
    between single quotes in a directive argument.

    Args:
        value: the value to escape

    Raises:
        ValueError: ``value`` contains a NUL character

    Returns:
        The escaped value; ``value`` itself if there was nothing to escape.

    """
    if "\0" in value:
        msg = "Directive arguments cannot contain NUL characters"
        raise ValueError(msg)
    if _ESCAPE_RE.search(value) is None:
        return value
    return _ESCAPE_RE.sub(r"\\\g<0>", value)


def quote(value: str) -> str:
    """Return ``value`` escaped and wrapped in single quotes."""
    return f"'{escape(value)}'"


def split_args(args: str) -> list[str]:
    """
    Split a directive's argument string into words.

    Words are separated by whitespace.  A word may be wrapped in single or
    double quotes; inside quotes a backslash escapes the quote character or
    another backslash and is otherwise kept.  Outside quotes only ``\\\\`` is
    unescaped.

    Args:
        args: the argument string

    Returns:
        The list of words.

    """
    words: list[str] = []
    i = 0
    length = len(args)
    while i < length:
        if args[i].isspace():
            i += 1
            continue
        quote_char = args[i] if args[i] in "'\"" else None
        if quote_char:
            i += 1
        word: list[str] = []
        while i < length:
            char = args[i]
            if quote_char is None and char.isspace():
                break
            if quote_char is not None and char == quote_char:
                i += 1
                break
            if (
                char == "\\"
                and i + 1 < length
                and args[i + 1] in ("\\", quote_char)
            ):
                i += 1
                char = args[i]
            word.append(char)
            i += 1
        words.append("".join(word))
    return words


@dataclass(frozen=True)
class Directive:
    """One configuration line: a directive name and its raw argument string."""

    name: str
    args: str

    def __str__(self) -> str:
        return f"{self.name} {self.args}"


@dataclass(frozen=True)
class VhostConfiguration:
    """The ordered directives that configure one virtual host."""

    directives: tuple[Directive, ...]

    def __iter__(self):
        return iter(self.directives)

    def __len__(self) -> int:
        return len(self.directives)

    @classmethod
    def from_record(cls, record: VhostRecord) -> "VhostConfiguration":
        """
        Build the directives for ``record``.

        The result always sets ``ServerName`` and ``DocumentRoot`` and
        switches off directory lookups for the new virtual host.  If the
        record has a uid, scripts run as that uid and gid and the owner's
        ``~user`` directory is the only one enabled.

        Args:
            record: the virtual host record

        Raises:
            MalformedDirectoryResponse: the record has a uid but no gid or no
                username, or a value contains a NUL character

        Returns:
            A new :py:class:`VhostConfiguration`.

        """
        try:
            directives = [
                Directive("ServerName", quote(record.name)),
                Directive("DocumentRoot", quote(record.document_root)),
            ]
            if record.uid is not None:
                if record.gid is None:
                    logger.error("could not get gid for uid %s dn=%s", record.uid, record.dn)
                    msg = f"could not get gid for uid {record.uid}"
                    raise MalformedDirectoryResponse(msg)
                if record.username is None:
                    logger.error(
                        "could not get username for uid %s dn=%s", record.uid, record.dn
                    )
                    msg = f"could not get username for uid {record.uid}"
                    raise MalformedDirectoryResponse(msg)
                directives += [
                    Directive(
                        "SuexecUserGroup",
                        f"'#{escape(record.uid)}' '#{escape(record.gid)}'",
                    ),
                    Directive("UserDir", quote(USERDIR)),
                    # Deal with ~ expansion
                    Directive("UserDir", "disabled"),
                    Directive("UserDir", f"enabled {quote(record.username)}"),
                ]
        except ValueError as e:
            msg = f"Directory entry {record.dn} has an unusable value: {e}"
            raise MalformedDirectoryResponse(msg) from e
        directives.append(Directive("VhostLDAPEnabled", "off"))
        return cls(directives=tuple(directives))
