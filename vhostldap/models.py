"""
Directory entries and the virtual host records derived from them.

:py:class:`DirectoryRecord` is what a successful search hands back: the entry's
DN and one value per requested attribute.  :py:meth:`VhostRecord.from_directory`
maps those values onto the fields of a :py:class:`VhostRecord` and checks that
the record is usable.
"""

import logging
from dataclasses import dataclass

from .exceptions import MalformedDirectoryResponse
from .typing import AttributeValues

logger = logging.getLogger(__name__)

#: The attributes we ask the directory for, in the order their values come back.
ATTRIBUTES: tuple[str, ...] = (
    "scriptsVhostName",
    "homeDirectory",
    "scriptsVhostDirectory",
    "uidNumber",
    "uid",
    "gidNumber",
)

#: The user directory under each home directory that holds the web content.
USERDIR = "web_scripts"

#: Lower-cased attribute name to :py:class:`VhostRecord` field name.
ATTRIBUTE_TO_FIELD_NAME_MAP: dict[str, str] = {
    "scriptsvhostname": "name",
    "homedirectory": "home",
    "scriptsvhostdirectory": "directory",
    "uidnumber": "uid",
    "uid": "username",
    "gidnumber": "gid",
}


@dataclass(frozen=True)
class DirectoryRecord:
    """
    The raw result of a successful virtual host search.

    If more than one entry matched, this is the first one the directory
    returned.
    """

    #: The DN of the matching entry
    dn: str
    #: One value per name in :py:attr:`attributes`; ``None`` if the entry
    #: does not have that attribute
    values: AttributeValues
    #: The attribute names, aligned with :py:attr:`values`
    attributes: tuple[str, ...] = ATTRIBUTES


@dataclass(frozen=True)
class VhostRecord:
    """
    Everything we need to know to configure a virtual host.
    """

    #: The DN of the directory entry this record came from
    dn: str
    #: The ``ServerName`` of the virtual host
    name: str
    #: The home directory of the account that owns the virtual host
    home: str
    #: The document root, relative to ``<home>/web_scripts``; ``.`` means
    #: ``web_scripts`` itself
    directory: str
    #: The numeric uid to run scripts as
    uid: str | None = None
    #: The username that owns the virtual host
    username: str | None = None
    #: The numeric gid to run scripts as
    gid: str | None = None

    @classmethod
    def from_directory(cls, record: DirectoryRecord) -> "VhostRecord":
        """
        Build a :py:class:`VhostRecord` from the values returned by a search.

        Values are matched to fields by attribute name, ignoring case.  Names
        we do not know about are logged and skipped.

        Args:
            record: the search result

        Raises:
            MalformedDirectoryResponse: the entry has no server name, home
                directory or vhost directory

        Returns:
            A new :py:class:`VhostRecord`.

        """
        kwargs: dict[str, str | None] = {}
        for attribute, value in zip(record.attributes, record.values, strict=False):
            field_name = ATTRIBUTE_TO_FIELD_NAME_MAP.get(attribute.lower())
            if field_name is None:
                logger.debug("Unexpected attribute %s encountered", attribute)
                continue
            kwargs[field_name] = value
        logger.debug(
            "loaded from ldap: dn: %s, scriptsVhostName: %s, homeDirectory: %s, "
            "scriptsVhostDirectory: %s, uidNumber: %s, uid: %s, gidNumber: %s",
            record.dn,
            kwargs.get("name"),
            kwargs.get("home"),
            kwargs.get("directory"),
            kwargs.get("uid"),
            kwargs.get("username"),
            kwargs.get("gid"),
        )
        for required in ("name", "home", "directory"):
            if not kwargs.get(required):
                logger.error(
                    "translate failed; ServerName or DocumentRoot not defined "
                    "dn=%s",
                    record.dn,
                )
                msg = (
                    f"Directory entry {record.dn} has no {required}; cannot "
                    "configure a ServerName and DocumentRoot"
                )
                raise MalformedDirectoryResponse(msg)
        return cls(dn=record.dn, **kwargs)  # type: ignore[arg-type]

    @property
    def document_root(self) -> str:
        """
        The absolute document root: ``<home>/web_scripts`` or
        ``<home>/web_scripts/<directory>``.
        """
        if self.directory == ".":
            return f"{self.home}/{USERDIR}"
        return f"{self.home}/{USERDIR}/{self.directory}"
