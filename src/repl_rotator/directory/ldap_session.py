"""python-ldap backed directory sessions.

Requires the ``ldap`` extra (``pip install repl-rotator[ldap]``).
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

import ldap

from repl_rotator.config import DirectoryConfig
from repl_rotator.directory.base import DirectorySession, Entry, Scope
from repl_rotator.errors import DirectoryConnectionError, ModifyError, QueryError

logger = logging.getLogger(__name__)

_SCOPES = {
    Scope.BASE: ldap.SCOPE_BASE,
    Scope.ONELEVEL: ldap.SCOPE_ONELEVEL,
    Scope.SUBTREE: ldap.SCOPE_SUBTREE,
}


def _describe(exc: ldap.LDAPError) -> str:
    """Extract a readable message from a python-ldap error."""
    if exc.args and isinstance(exc.args[0], dict):
        info = exc.args[0]
        desc = info.get("desc", "")
        extra = info.get("info", "")
        return f"{desc} ({extra})" if extra else str(desc)
    return str(exc)


def _decode(values: list[bytes]) -> list[str]:
    return [v.decode("utf-8", errors="replace") for v in values]


class LdapSession(DirectorySession):
    """A bound python-ldap connection.

    All wire operations hold an internal lock; python-ldap's synchronous
    calls on one connection must not interleave.
    """

    def __init__(self, conn: "ldap.ldapobject.LDAPObject", host: str, port: int) -> None:
        self._conn = conn
        self._host = host
        self._port = port
        self._lock = threading.Lock()
        self._closed = False

    @property
    def address(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: list[str],
        scope: Scope = Scope.SUBTREE,
    ) -> list[Entry]:
        with self._lock:
            if self._closed:
                raise DirectoryConnectionError(self._host, "session is closed")
            try:
                raw = self._conn.search_s(base, _SCOPES[scope], search_filter, attributes)
            except ldap.SERVER_DOWN as exc:
                raise DirectoryConnectionError(self._host, _describe(exc)) from exc
            except ldap.LDAPError as exc:
                raise QueryError(base, search_filter, _describe(exc)) from exc

        entries: list[Entry] = []
        for dn, attrs in raw:
            if dn is None:
                # search continuation reference
                continue
            entries.append(
                Entry(dn=dn, attributes={k: _decode(v) for k, v in attrs.items()})
            )
        return entries

    def modify(self, dn: str, attribute: str, value: str) -> None:
        with self._lock:
            if self._closed:
                raise ModifyError(dn, attribute, "session is closed")
            try:
                self._conn.modify_s(dn, [(ldap.MOD_REPLACE, attribute, [value.encode("utf-8")])])
            except ldap.LDAPError as exc:
                raise ModifyError(dn, attribute, _describe(exc)) from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.unbind_s()
            except ldap.LDAPError as exc:
                logger.warning("Error while unbinding from %s: %s", self._host, _describe(exc))
            logger.debug("Closed directory session to %s:%d", self._host, self._port)


def connect(
    host: str,
    port: int,
    bind_dn: str,
    password: str,
    use_tls: bool = False,
    skip_tls_verify: bool = False,
    timeout: float = 30.0,
) -> LdapSession:
    """Open and bind a session.

    Raises
    ------
    DirectoryConnectionError
        If the server is unreachable, TLS negotiation fails, or the bind is
        rejected.
    """
    uri = f"ldap://{host}:{port}"
    logger.info("Connecting to directory server %s as %s", uri, bind_dn)
    try:
        conn = ldap.initialize(uri)
        conn.set_option(ldap.OPT_REFERRALS, 0)
        conn.set_option(ldap.OPT_NETWORK_TIMEOUT, timeout)
        conn.set_option(ldap.OPT_TIMEOUT, timeout)
        if use_tls:
            if skip_tls_verify:
                conn.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
                conn.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
            conn.start_tls_s()
        conn.simple_bind_s(bind_dn, password)
    except ldap.LDAPError as exc:
        raise DirectoryConnectionError(host, _describe(exc)) from exc
    logger.info("Bound to %s", uri)
    return LdapSession(conn, host, port)


def connect_from_config(config: DirectoryConfig) -> LdapSession:
    """Open the supplier session described by *config*."""
    return connect(
        host=config.host,
        port=config.port,
        bind_dn=config.bind_dn,
        password=config.password,
        use_tls=config.use_tls,
        skip_tls_verify=config.skip_tls_verify,
        timeout=config.timeout,
    )


class LdapConnector:
    """Opens consumer sessions with the administrative credentials of *config*.

    Instances are usable as a :data:`~repl_rotator.directory.base.Connector`.
    """

    def __init__(self, config: DirectoryConfig) -> None:
        self._config = config

    def __call__(self, host: str, port: Optional[int] = None) -> LdapSession:
        return connect(
            host=host,
            port=port or self._config.port,
            bind_dn=self._config.bind_dn,
            password=self._config.password,
            use_tls=self._config.use_tls,
            skip_tls_verify=self._config.skip_tls_verify,
            timeout=self._config.timeout,
        )


__all__ = ["LdapConnector", "LdapSession", "connect", "connect_from_config"]
