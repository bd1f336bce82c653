"""
Resolve virtual hosts from an LDAP directory at connection time.
"""

from .exceptions import VhostLDAPError
from .options import ResolutionConfig
from .resolver import DECLINED, OK, Resolution, VhostResolver

__version__ = "1.0.0"

__all__ = [
    "DECLINED",
    "OK",
    "Resolution",
    "ResolutionConfig",
    "VhostLDAPError",
    "VhostResolver",
]
