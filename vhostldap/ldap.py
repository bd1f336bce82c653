# This file is here so that we can patch the ldap module in our tests.  The
# directory adapter only ever talks to python-ldap through this module, so
# patching ``vhostldap.ldap.initialize`` swaps out every connection we make.
import ldap
from ldap import *  # noqa: F403
from ldap.filter import escape_filter_chars  # noqa: F401
from ldapurl import LDAPUrl, isLDAPUrl  # noqa: F401

__version__ = ldap.__version__
