"""
Tests for server objects and the reconfigurator.
"""

import unittest
from unittest.mock import Mock

from vhostldap.directives import Directive, VhostConfiguration
from vhostldap.exceptions import DirectiveError, VirtualHostInitError
from vhostldap.options import ResolutionConfig
from vhostldap.server import Reconfigurator, VirtualHost, VirtualHostRuntime


class TestVirtualHostRuntime(unittest.TestCase):
    """Test applying directives to :py:class:`VirtualHost` objects."""

    def setUp(self):
        self.runtime = VirtualHostRuntime()
        self.template = VirtualHost(
            server_admin="webmaster@example.com",
            port=80,
            timeout=300,
            keep_alive=True,
            vhost_ldap=ResolutionConfig(enabled=True),
        )
        self.server = self.runtime.init_virtual_host(self.template)

    def apply(self, name, args):
        self.runtime.apply_directive(self.server, Directive(name, args))

    def test_init_virtual_host(self):
        self.assertTrue(self.server.is_virtual)
        self.assertIsNone(self.server.server_name)
        self.assertIs(self.server.vhost_ldap, self.template.vhost_ldap)

    def test_server_name(self):
        self.apply("ServerName", "'foo.example.com'")
        self.assertEqual(self.server.server_name, "foo.example.com")
        self.assertEqual(self.server.directives, [Directive("ServerName", "'foo.example.com'")])

    def test_server_name_with_scheme(self):
        with self.assertRaises(DirectiveError):
            self.apply("ServerName", "'http://foo.example.com'")

    def test_document_root(self):
        self.apply("DocumentRoot", "'/mit/foo/web_scripts/'")
        self.assertEqual(self.server.document_root, "/mit/foo/web_scripts")

    def test_relative_document_root(self):
        with self.assertRaises(DirectiveError):
            self.apply("DocumentRoot", "'web_scripts'")

    def test_suexec_user_group(self):
        self.apply("SuexecUserGroup", "'#1234' '#5678'")
        self.assertEqual(self.server.suexec_user, "#1234")
        self.assertEqual(self.server.suexec_group, "#5678")

    def test_suexec_bad_id(self):
        with self.assertRaises(DirectiveError):
            self.apply("SuexecUserGroup", "'#12a' '#5678'")

    def test_userdir(self):
        self.apply("UserDir", "'web_scripts'")
        self.apply("UserDir", "disabled")
        self.apply("UserDir", "enabled 'foo'")
        self.assertEqual(self.server.userdirs, ["web_scripts"])
        self.assertTrue(self.server.userdir_disabled)
        self.assertEqual(self.server.userdir_enabled, ["foo"])

    def test_userdir_enabled_needs_users(self):
        with self.assertRaises(DirectiveError):
            self.apply("UserDir", "enabled")

    def test_vhost_ldap_enabled(self):
        self.apply("VhostLDAPEnabled", "off")
        self.assertFalse(self.server.vhost_ldap.enabled)
        self.assertTrue(self.template.vhost_ldap.enabled)
        self.assertFalse(self.runtime.get_config(self.server).is_active)

    def test_vhost_ldap_enabled_bad_value(self):
        with self.assertRaises(DirectiveError):
            self.apply("VhostLDAPEnabled", "maybe")

    def test_unknown_directive(self):
        with self.assertRaises(DirectiveError) as ctx:
            self.apply("Bogus", "value")
        self.assertIn("Invalid command 'Bogus'", str(ctx.exception))

    def test_wrong_argument_count(self):
        with self.assertRaises(DirectiveError):
            self.apply("ServerName", "'a' 'b'")
        with self.assertRaises(DirectiveError):
            self.apply("SuexecUserGroup", "'#1'")

    def test_failed_directive_is_not_recorded(self):
        with self.assertRaises(DirectiveError):
            self.apply("DocumentRoot", "'relative'")
        self.assertEqual(self.server.directives, [])

    def test_finalize(self):
        self.server.timeout = 60
        self.runtime.finalize(self.server, self.template)
        self.assertEqual(self.server.server_admin, "webmaster@example.com")
        self.assertEqual(self.server.port, 80)
        self.assertEqual(self.server.timeout, 60)
        self.assertTrue(self.server.keep_alive)


class TestReconfigurator(unittest.TestCase):
    """Test building configured servers."""

    def setUp(self):
        self.template = VirtualHost(port=80, server_admin="webmaster@example.com")
        self.configuration = VhostConfiguration(
            (
                Directive("ServerName", "'foo.example.com'"),
                Directive("DocumentRoot", "'/mit/foo/web_scripts'"),
                Directive("VhostLDAPEnabled", "off"),
            )
        )

    def test_apply(self):
        runtime = Mock(wraps=VirtualHostRuntime())
        server = Reconfigurator(runtime).apply(self.configuration, self.template)
        self.assertIsNot(server, self.template)
        self.assertEqual(server.server_name, "foo.example.com")
        self.assertEqual(server.document_root, "/mit/foo/web_scripts")
        self.assertEqual(server.port, 80)
        self.assertEqual(server.directives, list(self.configuration))
        runtime.init_virtual_host.assert_called_once_with(self.template)
        self.assertEqual(runtime.apply_directive.call_count, 3)
        runtime.finalize.assert_called_once_with(server, self.template)

    def test_template_is_untouched(self):
        Reconfigurator(VirtualHostRuntime()).apply(self.configuration, self.template)
        self.assertIsNone(self.template.server_name)
        self.assertEqual(self.template.directives, [])

    def test_init_failure(self):
        runtime = Mock()
        runtime.init_virtual_host.side_effect = RuntimeError("no memory for server")
        with self.assertLogs("vhostldap.server", level="ERROR"):
            with self.assertRaises(VirtualHostInitError):
                Reconfigurator(runtime).apply(self.configuration, self.template)
        runtime.apply_directive.assert_not_called()

    def test_directive_failure_stops(self):
        runtime = Mock()
        runtime.apply_directive.side_effect = [None, DirectiveError("bad")]
        with self.assertRaises(DirectiveError):
            Reconfigurator(runtime).apply(self.configuration, self.template)
        self.assertEqual(runtime.apply_directive.call_count, 2)
        runtime.finalize.assert_not_called()


if __name__ == "__main__":
    unittest.main()
