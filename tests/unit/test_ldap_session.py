"""Tests for repl_rotator.directory.ldap_session — python-ldap adapter."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

ldap = pytest.importorskip("ldap")

from repl_rotator.config import DirectoryConfig  # noqa: E402
from repl_rotator.directory import ldap_session  # noqa: E402
from repl_rotator.directory.base import Scope  # noqa: E402
from repl_rotator.errors import DirectoryConnectionError, ModifyError, QueryError  # noqa: E402


@pytest.fixture()
def conn() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def initialize(monkeypatch: pytest.MonkeyPatch, conn: MagicMock) -> MagicMock:
    fake = MagicMock(return_value=conn)
    monkeypatch.setattr(ldap_session.ldap, "initialize", fake)
    return fake


@pytest.fixture()
def config() -> DirectoryConfig:
    return DirectoryConfig(host="s1.example.com", bind_dn="cn=Directory Manager", password="pw")


# ---------------------------------------------------------------------------
# connect
# ---------------------------------------------------------------------------


class TestConnect:
    def test_binds_with_credentials(self, initialize: MagicMock, conn: MagicMock, config: DirectoryConfig) -> None:
        session = ldap_session.connect_from_config(config)
        initialize.assert_called_once_with("ldap://s1.example.com:389")
        conn.simple_bind_s.assert_called_once_with("cn=Directory Manager", "pw")
        conn.start_tls_s.assert_not_called()
        assert session.address == "s1.example.com"
        assert session.port == 389

    def test_start_tls(self, initialize: MagicMock, conn: MagicMock) -> None:
        ldap_session.connect("h", 389, "b", "p", use_tls=True, skip_tls_verify=True)
        conn.start_tls_s.assert_called_once_with()
        conn.set_option.assert_any_call(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)

    def test_bind_failure_is_connection_error(self, initialize: MagicMock, conn: MagicMock) -> None:
        conn.simple_bind_s.side_effect = ldap.INVALID_CREDENTIALS({"desc": "Invalid credentials"})
        with pytest.raises(DirectoryConnectionError) as exc_info:
            ldap_session.connect("h", 389, "b", "wrong")
        assert exc_info.value.reason == "Invalid credentials"

    def test_connector_uses_agreement_port(
        self, initialize: MagicMock, config: DirectoryConfig
    ) -> None:
        ldap_session.LdapConnector(config)("c1.example.com", 636)
        initialize.assert_called_once_with("ldap://c1.example.com:636")

    def test_connector_default_port(self, initialize: MagicMock, config: DirectoryConfig) -> None:
        ldap_session.LdapConnector(config)("c1.example.com")
        initialize.assert_called_once_with("ldap://c1.example.com:389")


# ---------------------------------------------------------------------------
# LdapSession
# ---------------------------------------------------------------------------


class TestLdapSession:
    def test_search_decodes_and_skips_references(self, conn: MagicMock) -> None:
        conn.search_s.return_value = [
            ("cn=a,cn=config", {"cn": [b"a"], "nsDS5ReplicaHost": [b"c1"]}),
            (None, ["ldap://elsewhere/"]),
        ]
        session = ldap_session.LdapSession(conn, "s1", 389)
        entries = session.search("cn=config", "(objectclass=*)", ["cn"], Scope.SUBTREE)
        conn.search_s.assert_called_once_with(
            "cn=config", ldap.SCOPE_SUBTREE, "(objectclass=*)", ["cn"]
        )
        assert len(entries) == 1
        assert entries[0].first("nsds5replicahost") == "c1"

    def test_search_error_is_query_error(self, conn: MagicMock) -> None:
        conn.search_s.side_effect = ldap.NO_SUCH_OBJECT({"desc": "No such object"})
        with pytest.raises(QueryError):
            ldap_session.LdapSession(conn, "s1", 389).search("cn=x", "(cn=*)", [])

    def test_server_down_is_connection_error(self, conn: MagicMock) -> None:
        conn.search_s.side_effect = ldap.SERVER_DOWN({"desc": "Can't contact LDAP server"})
        with pytest.raises(DirectoryConnectionError):
            ldap_session.LdapSession(conn, "s1", 389).search("cn=x", "(cn=*)", [])

    def test_modify_replaces_attribute(self, conn: MagicMock) -> None:
        ldap_session.LdapSession(conn, "s1", 389).modify("cn=a", "userPassword", "N3w!")
        conn.modify_s.assert_called_once_with("cn=a", [(ldap.MOD_REPLACE, "userPassword", [b"N3w!"])])

    def test_modify_error(self, conn: MagicMock) -> None:
        conn.modify_s.side_effect = ldap.INSUFFICIENT_ACCESS(
            {"desc": "Insufficient access", "info": "no write"}
        )
        with pytest.raises(ModifyError) as exc_info:
            ldap_session.LdapSession(conn, "s1", 389).modify("cn=a", "userPassword", "x")
        assert exc_info.value.reason == "Insufficient access (no write)"

    def test_close_is_idempotent(self, conn: MagicMock) -> None:
        session = ldap_session.LdapSession(conn, "s1", 389)
        session.close()
        session.close()
        conn.unbind_s.assert_called_once_with()
        with pytest.raises(DirectoryConnectionError):
            session.search("cn=x", "(cn=*)", [])
        with pytest.raises(ModifyError):
            session.modify("cn=a", "userPassword", "x")
