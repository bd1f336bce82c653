"""
Tests for the python-ldap backed directory.
"""

import tempfile
import unittest
from unittest.mock import MagicMock, call, patch

import ldap

from vhostldap.directory import LdapDirectory, first_value
from vhostldap.exceptions import (
    DirectoryProtocolError,
    DirectoryUnavailable,
    MalformedDirectoryResponse,
    NoSuchObject,
)
from vhostldap.models import ATTRIBUTES

FILTER = (
    "(&(objectClass=scriptsVhost)"
    "(|(scriptsVhostName=foo.example.com)(scriptsVhostAlias=foo.example.com)))"
)
DN = "scriptsVhostName=foo.example.com,ou=VirtualHosts,dc=example,dc=com"


class TestFirstValue(unittest.TestCase):
    """Test pulling attribute values out of search results."""

    def test_decodes_first_value(self):
        attrs = {"homeDirectory": [b"/mit/foo", b"/mit/other"]}
        self.assertEqual(first_value(attrs, "homeDirectory"), "/mit/foo")

    def test_ignores_case(self):
        self.assertEqual(first_value({"uidnumber": [b"1234"]}, "uidNumber"), "1234")

    def test_missing(self):
        self.assertIsNone(first_value({"uid": []}, "uid"))
        self.assertIsNone(first_value({}, "uid"))


class TestLdapDirectoryInit(unittest.TestCase):
    """Test constructing :py:class:`LdapDirectory`."""

    def test_bad_tls_verify(self):
        with self.assertRaises(ValueError):
            LdapDirectory(tls_verify="sometimes")

    def test_missing_ca_certfile(self):
        with self.assertRaises(OSError):
            LdapDirectory(tls_ca_certfile="/nonexistent/ca.pem")

    def test_ca_certfile_is_a_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(OSError):
                LdapDirectory(tls_ca_certfile=tmpdir)

    def test_uri(self):
        self.assertEqual(
            LdapDirectory.uri(("a.example.com", "b.example.com"), 636, True),
            "ldaps://a.example.com:636 ldaps://b.example.com:636",
        )


class TestLdapDirectoryAcquire(unittest.TestCase):
    """Test opening directory connections."""

    def setUp(self):
        self.connection = MagicMock()
        patcher = patch("vhostldap.ldap.initialize", return_value=self.connection)
        self.initialize = patcher.start()
        self.addCleanup(patcher.stop)
        self.directory = LdapDirectory(timeout=5)

    def acquire(self, **kwargs):
        options = {
            "hosts": ("ldap.example.com",),
            "port": 389,
            "binddn": None,
            "bindpw": None,
            "deref": ldap.DEREF_ALWAYS,
            "secure": False,
        }
        options.update(kwargs)
        return self.directory.acquire(**options)

    def test_anonymous_bind(self):
        handle = self.acquire()
        self.assertIs(handle, self.connection)
        self.initialize.assert_called_once_with("ldap://ldap.example.com:389")
        self.connection.set_option.assert_has_calls(
            [
                call(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3),
                call(ldap.OPT_REFERRALS, 0),
                call(ldap.OPT_NETWORK_TIMEOUT, 5.0),
                call(ldap.OPT_DEREF, ldap.DEREF_ALWAYS),
            ]
        )
        self.connection.simple_bind_s.assert_called_once_with("", "")

    def test_bind_with_credentials(self):
        self.acquire(binddn="cn=vhost,dc=example,dc=com", bindpw="secret")
        self.connection.simple_bind_s.assert_called_once_with(
            "cn=vhost,dc=example,dc=com", "secret"
        )

    def test_secure_sets_tls_options(self):
        self.acquire(secure=True, port=636)
        self.initialize.assert_called_once_with("ldaps://ldap.example.com:636")
        self.connection.set_option.assert_any_call(
            ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER
        )
        self.connection.set_option.assert_any_call(ldap.OPT_X_TLS_NEWCTX, 0)

    def test_secure_verify(self):
        self.directory = LdapDirectory(tls_verify="always")
        self.acquire(secure=True)
        self.connection.set_option.assert_any_call(
            ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND
        )

    def test_server_down(self):
        """Test that an unreachable server is a transient failure."""
        self.connection.simple_bind_s.side_effect = ldap.SERVER_DOWN(
            {"desc": "Can't contact LDAP server"}
        )
        with self.assertRaises(DirectoryUnavailable) as ctx:
            self.acquire()
        self.assertIn("Can't contact LDAP server", str(ctx.exception))
        self.connection.unbind_s.assert_called_once_with()

    def test_bad_credentials(self):
        """Test that a failed bind is not retried."""
        self.connection.simple_bind_s.side_effect = ldap.INVALID_CREDENTIALS(
            {"desc": "Invalid credentials"}
        )
        with self.assertRaises(DirectoryProtocolError):
            self.acquire(binddn="cn=vhost", bindpw="wrong")
        self.connection.unbind_s.assert_called_once_with()


class TestLdapDirectorySearch(unittest.TestCase):
    """Test searching for virtual host entries."""

    def setUp(self):
        self.directory = LdapDirectory()
        self.handle = MagicMock()

    def search(self):
        return self.directory.search(
            self.handle,
            basedn="ou=VirtualHosts,dc=example,dc=com",
            scope=ldap.SCOPE_SUBTREE,
            attributes=ATTRIBUTES,
            filterstr=FILTER,
        )

    def test_match(self):
        self.handle.search_s.return_value = [
            (
                DN,
                {
                    "scriptsVhostName": [b"foo.example.com"],
                    "homeDirectory": [b"/mit/foo"],
                    "scriptsVhostDirectory": [b"."],
                    "uidNumber": [b"1234"],
                    "uid": [b"foo"],
                    "gidNumber": [b"5678"],
                },
            )
        ]
        record = self.search()
        self.handle.search_s.assert_called_once_with(
            "ou=VirtualHosts,dc=example,dc=com",
            ldap.SCOPE_SUBTREE,
            filterstr=FILTER,
            attrlist=list(ATTRIBUTES),
        )
        self.assertEqual(record.dn, DN)
        self.assertEqual(
            record.values,
            ("foo.example.com", "/mit/foo", ".", "1234", "foo", "5678"),
        )
        self.assertEqual(record.attributes, ATTRIBUTES)

    def test_value_not_utf8(self):
        """Test that an undecodable value is a malformed entry, not a crash."""
        self.handle.search_s.return_value = [
            (
                DN,
                {
                    "scriptsVhostName": [b"foo.example.com"],
                    "homeDirectory": [b"/mit/caf\xe9"],
                    "scriptsVhostDirectory": [b"."],
                },
            )
        ]
        with self.assertLogs("vhostldap.directory", level="ERROR"):
            with self.assertRaises(MalformedDirectoryResponse) as ctx:
                self.search()
        self.assertIsInstance(ctx.exception.__cause__, UnicodeDecodeError)

    def test_missing_attributes_are_none(self):
        self.handle.search_s.return_value = [
            (DN, {"scriptsVhostName": [b"foo.example.com"]})
        ]
        record = self.search()
        self.assertEqual(record.values, ("foo.example.com", None, None, None, None, None))

    def test_first_match_wins(self):
        self.handle.search_s.return_value = [
            (DN, {"scriptsVhostName": [b"first"]}),
            ("cn=other", {"scriptsVhostName": [b"second"]}),
        ]
        self.assertEqual(self.search().values[0], "first")

    def test_references_are_skipped(self):
        """Test that search references do not count as matches."""
        self.handle.search_s.return_value = [
            (None, ["ldap://other.example.com/dc=example,dc=com"]),
            (DN, {"scriptsVhostName": [b"foo.example.com"]}),
        ]
        self.assertEqual(self.search().dn, DN)

    def test_no_results(self):
        self.handle.search_s.return_value = []
        with self.assertRaises(NoSuchObject):
            self.search()

    def test_only_references(self):
        self.handle.search_s.return_value = [(None, ["ldap://other.example.com/"])]
        with self.assertRaises(NoSuchObject):
            self.search()

    def test_no_such_object(self):
        self.handle.search_s.side_effect = ldap.NO_SUCH_OBJECT({"desc": "No such object"})
        with self.assertRaises(NoSuchObject):
            self.search()

    def test_timeout_is_transient(self):
        self.handle.search_s.side_effect = ldap.TIMEOUT({"desc": "Timed out"})
        with self.assertRaises(DirectoryUnavailable):
            self.search()

    def test_other_errors_are_permanent(self):
        self.handle.search_s.side_effect = ldap.FILTER_ERROR({"desc": "Bad search filter"})
        with self.assertRaises(DirectoryProtocolError):
            self.search()


class TestLdapDirectoryRelease(unittest.TestCase):
    """Test closing directory connections."""

    def test_unbind(self):
        handle = MagicMock()
        LdapDirectory().release(handle)
        handle.unbind_s.assert_called_once_with()

    def test_unbind_errors_are_ignored(self):
        handle = MagicMock()
        handle.unbind_s.side_effect = ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})
        LdapDirectory().release(handle)


if __name__ == "__main__":
    unittest.main()
