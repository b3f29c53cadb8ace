import unittest
from unittest.mock import patch

import ldap
from ldap_faker import FakeLDAPObject
from ldap_faker.unittest import LDAPFakerMixin

from ldap_tree import (
    ConfigurationError,
    ConnectionParameters,
    ConnectionState,
    DirectoryConnectionError,
    LDAPConnection,
    LogicError,
)


class TestConnectionParameters_build(unittest.TestCase):
    def test_adds_scheme(self):
        self.assertEqual(ConnectionParameters.build("ldap.example.com").uri, "ldap://ldap.example.com")

    def test_keeps_existing_scheme(self):
        self.assertEqual(
            ConnectionParameters.build("ldap://ldap.example.com:389").uri,
            "ldap://ldap.example.com:389",
        )

    def test_scheme_is_matched_in_any_case(self):
        self.assertEqual(
            ConnectionParameters.build("LDAP://ldap.example.com").uri,
            "ldap://ldap.example.com",
        )
        self.assertEqual(
            ConnectionParameters.build("Ldap://ldap.example.com:389").uri,
            "ldap://ldap.example.com:389",
        )

    def test_keeps_ldaps(self):
        self.assertEqual(
            ConnectionParameters.build("ldaps://ldap.example.com").uri,
            "ldaps://ldap.example.com",
        )

    def test_blank_host_raises_ConfigurationError(self):
        for host in ["", "   ", None]:
            with self.subTest(host=host), self.assertRaises(ConfigurationError):
                ConnectionParameters.build(host)  # type: ignore[arg-type]

    def test_anonymous(self):
        params = ConnectionParameters.build("server", principal="  ", credential="")
        self.assertTrue(params.anonymous)
        self.assertIsNone(params.principal)
        self.assertIsNone(params.credential)

    def test_simple_bind(self):
        params = ConnectionParameters.build("server", principal="cn=admin", credential="pw")
        self.assertFalse(params.anonymous)
        self.assertEqual(params.principal, "cn=admin")
        self.assertEqual(params.credential, "pw")

    def test_principal_without_credential_raises_ConfigurationError(self):
        with self.assertRaises(ConfigurationError):  # noqa: PT027
            ConnectionParameters.build("server", principal="cn=admin")
        with self.assertRaises(ConfigurationError):  # noqa: PT027
            ConnectionParameters.build("server", credential="pw")

    def test_bad_timeout_raises_ConfigurationError(self):
        with self.assertRaises(ConfigurationError):  # noqa: PT027
            ConnectionParameters.build("server", timeout=0)

    def test_is_frozen(self):
        params = ConnectionParameters.build("server")
        with self.assertRaises(AttributeError):  # noqa: PT027
            params.uri = "ldap://other"  # type: ignore[misc]


class ConnectionTestCase(LDAPFakerMixin, unittest.TestCase):
    ldap_modules = ["ldap_tree.connection"]
    ldap_fixtures = "directory.json"

    def setUp(self) -> None:
        super().setUp()
        sleep_patch = patch("ldap_tree.connection.time.sleep")
        self.sleep = sleep_patch.start()
        self.addCleanup(sleep_patch.stop)

    def make_connection(self, **kwargs) -> LDAPConnection:
        return LDAPConnection(
            "localhost",
            principal="cn=admin,dc=example,dc=com",
            credential="the password",
            **kwargs,
        )


class TestLDAPConnection_init(ConnectionTestCase):
    def test_connects_and_disconnects_once(self):
        conn = self.make_connection()
        self.assertEqual(len(self.fake_ldap.connections), 1)
        self.assertTrue(self.fake_ldap.has_connection("ldap://localhost"))
        names = self.last_connection().calls.names  # type: ignore[union-attr]
        self.assertIn("simple_bind_s", names)
        self.assertIn("unbind_s", names)
        self.assertEqual(conn.state, ConnectionState.DISCONNECTED)

    def test_binds_as_principal(self):
        self.make_connection()
        call = self.last_connection().calls.filter_calls("simple_bind_s")[0]  # type: ignore[union-attr]
        self.assertEqual(call.args["who"], "cn=admin,dc=example,dc=com")
        self.assertEqual(call.args["cred"], "the password")

    def test_anonymous_bind(self):
        LDAPConnection("localhost")
        call = self.last_connection().calls.filter_calls("simple_bind_s")[0]  # type: ignore[union-attr]
        self.assertIsNone(call.args["who"])
        self.assertIsNone(call.args["cred"])

    def test_sets_session_options(self):
        self.make_connection(timeout=5.0)
        conn = self.last_connection()
        self.assertIn("set_option", conn.calls.names)  # type: ignore[union-attr]
        self.assertEqual(conn.get_option(ldap.OPT_REFERRALS), 0)  # type: ignore[union-attr,attr-defined]
        self.assertEqual(conn.get_option(ldap.OPT_NETWORK_TIMEOUT), 5.0)  # type: ignore[union-attr,attr-defined]
        self.assertEqual(conn.get_option(ldap.OPT_TIMEOUT), 5.0)  # type: ignore[union-attr,attr-defined]

    def test_bad_credentials_raise_DirectoryConnectionError(self):
        with self.assertRaises(DirectoryConnectionError):  # noqa: PT027
            LDAPConnection("localhost", principal="cn=admin,dc=example,dc=com", credential="wrong")

    def test_tunables(self):
        conn = self.make_connection(reconnect_delay=0.25, reconnect_limit=3)
        self.assertEqual(conn.reconnect_delay, 0.25)
        self.assertEqual(conn.reconnect_limit, 3)

    def test_default_tunables(self):
        conn = self.make_connection()
        self.assertEqual(conn.reconnect_delay, 1.0)
        self.assertEqual(conn.reconnect_limit, 10)

    def test_negative_tunables_raise_ConfigurationError(self):
        with self.assertRaises(ConfigurationError):  # noqa: PT027
            self.make_connection(reconnect_delay=-1)
        with self.assertRaises(ConfigurationError):  # noqa: PT027
            self.make_connection(reconnect_limit=-1)


class TestLDAPConnection_connect(ConnectionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.conn = self.make_connection()

    def test_connect(self):
        session = self.conn.connect()
        self.assertIsInstance(session, FakeLDAPObject)
        self.assertEqual(self.conn.state, ConnectionState.CONNECTED)
        self.assertEqual(session.bound_dn, "cn=admin,dc=example,dc=com")

    def test_connect_closes_open_session_first(self):
        first = self.conn.connect()
        second = self.conn.connect()
        self.assertIsNot(first, second)
        self.assertIn("unbind_s", first.calls.names)
        self.assertNotIn("unbind_s", second.calls.names)

    def test_disconnect(self):
        session = self.conn.connect()
        self.conn.disconnect()
        self.assertIn("unbind_s", session.calls.names)
        self.assertEqual(self.conn.state, ConnectionState.DISCONNECTED)

    def test_disconnect_without_session_is_a_noop(self):
        connections = len(self.fake_ldap.connections)
        self.conn.disconnect()
        self.conn.disconnect()
        self.assertEqual(len(self.fake_ldap.connections), connections)

    def test_unbind_failure_raises_DirectoryConnectionError(self):
        self.conn.connect()
        with patch.object(FakeLDAPObject, "unbind_s", side_effect=ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})):  # noqa: E501
            with self.assertRaises(DirectoryConnectionError):  # noqa: PT027
                self.conn.disconnect()
        # the session is gone either way
        self.conn.disconnect()

    def test_session_context_manager(self):
        with self.conn.session() as session:
            self.assertEqual(self.conn.state, ConnectionState.CONNECTED)
        self.assertIn("unbind_s", session.calls.names)
        self.assertEqual(self.conn.state, ConnectionState.DISCONNECTED)

    def test_session_context_manager_disconnects_on_error(self):
        with self.assertRaises(RuntimeError), self.conn.session() as session:  # noqa: PT027
            raise RuntimeError("boom")
        self.assertIn("unbind_s", session.calls.names)
        self.assertEqual(self.conn.state, ConnectionState.DISCONNECTED)


class TestLDAPConnection_reconnect(ConnectionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.conn = self.make_connection(reconnect_delay=0.5, reconnect_limit=2)

    def test_mark_for_reconnect_does_not_close_anything(self):
        session = self.conn.connect()
        self.conn.mark_for_reconnect()
        self.assertEqual(self.conn.state, ConnectionState.PENDING_RECONNECT)
        self.assertNotIn("unbind_s", session.calls.names)

    def test_reconnect_sleeps_and_counts(self):
        stale = self.conn.connect()
        self.conn.mark_for_reconnect()
        self.conn.connect()
        self.sleep.assert_called_once_with(0.5)
        self.assertEqual(self.conn.attempts, 1)
        self.assertEqual(self.conn.state, ConnectionState.CONNECTED)
        self.assertIn("unbind_s", stale.calls.names)

    def test_reconnect_is_logged(self):
        self.conn.mark_for_reconnect()
        with self.assertLogs("ldap_tree", level="INFO") as logs:
            self.conn.connect()
        self.assertEqual(
            logs.output,
            ["INFO:ldap_tree:Reconnecting to ldap://localhost (attempt 1) in 0.5 seconds"],
        )

    def test_giving_up_is_logged(self):
        for _ in range(2):
            self.conn.mark_for_reconnect()
            self.conn.connect()
        self.conn.mark_for_reconnect()
        with self.assertLogs("ldap_tree", level="ERROR") as logs, self.assertRaises(LogicError):  # noqa: PT027
            self.conn.connect()
        self.assertEqual(
            logs.output,
            ["ERROR:ldap_tree:Giving up on ldap://localhost after 2 reconnect attempts"],
        )

    def test_plain_connect_resets_counter(self):
        self.conn.mark_for_reconnect()
        self.conn.connect()
        self.assertEqual(self.conn.attempts, 1)
        self.conn.connect()
        self.assertEqual(self.conn.attempts, 0)
        self.sleep.assert_called_once()

    def test_disconnect_resets_counter(self):
        self.conn.mark_for_reconnect()
        self.conn.connect()
        self.conn.disconnect()
        self.assertEqual(self.conn.attempts, 0)

    def test_gives_up_after_reconnect_limit(self):
        for _ in range(2):
            self.conn.mark_for_reconnect()
            self.conn.connect()
        self.conn.mark_for_reconnect()
        with self.assertRaises(LogicError):  # noqa: PT027
            self.conn.connect()
        self.assertEqual(self.sleep.call_count, 2)

    def test_stale_session_that_wont_unbind_is_dropped(self):
        self.conn.connect()
        self.conn.mark_for_reconnect()
        with patch.object(FakeLDAPObject, "unbind_s", side_effect=ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})):  # noqa: E501
            session = self.conn.connect()
        self.assertEqual(self.conn.state, ConnectionState.CONNECTED)
        self.assertIsInstance(session, FakeLDAPObject)

    def test_reconnect_open_failure_raises_DirectoryConnectionError(self):
        self.conn.mark_for_reconnect()
        with patch.object(FakeLDAPObject, "simple_bind_s", side_effect=ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})):  # noqa: E501
            with self.assertRaises(DirectoryConnectionError):  # noqa: PT027
                self.conn.connect()
