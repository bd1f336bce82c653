"""
Virtual host LDAP type definitions.

This module provides type aliases for LDAP data structures and the values
passed between the resolution engine's components, using Python 3.10+ type
hinting conventions.
"""

LDAPData = tuple[str, dict[str, list[bytes]]]
AttributeValues = tuple[str | None, ...]
HostList = tuple[str, ...]
