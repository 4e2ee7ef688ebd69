"""In-memory directory servers.

Used by the test-suite and by the CLI's ``--simulate`` mode to exercise the
full rotation path without a live 389 Directory Server. Each simulated
server keeps its entries and a log of every write it accepted.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Optional

from repl_rotator.directory.base import DirectorySession, Entry, Scope
from repl_rotator.errors import DirectoryConnectionError, ModifyError, QueryError

_EQUALITY_FILTER = re.compile(r"^\(\s*([A-Za-z0-9.-]+)\s*=\s*([^()]*)\)$")


@dataclass(frozen=True)
class RecordedWrite:
    """One accepted (or rejected) modify call."""

    server: str
    dn: str
    attribute: str
    value: str
    accepted: bool


def _in_scope(dn: str, base: str, scope: Scope) -> bool:
    dn_l = dn.lower()
    base_l = base.lower()
    if scope is Scope.BASE:
        return dn_l == base_l
    if not dn_l.endswith("," + base_l):
        return scope is Scope.SUBTREE and dn_l == base_l
    if scope is Scope.ONELEVEL:
        return "," not in dn_l[: -len(base_l) - 1]
    return True


class InMemoryServer:
    """Simulated directory server state shared by its sessions."""

    def __init__(self, address: str) -> None:
        self.address = address
        self.entries: dict[str, dict[str, list[str]]] = {}
        self.writes: list[RecordedWrite] = []
        self.failing_dns: set[str] = set()
        self.search_error: Optional[str] = None
        self._lock = threading.Lock()

    def add_entry(self, dn: str, attributes: dict[str, list[str]]) -> None:
        with self._lock:
            self.entries[dn] = {k: list(v) for k, v in attributes.items()}

    def fail_writes_to(self, dn: str) -> None:
        """Make every subsequent modify of *dn* fail."""
        with self._lock:
            self.failing_dns.add(dn.lower())

    def attribute(self, dn: str, name: str) -> list[str]:
        with self._lock:
            return list(Entry(dn, self.entries.get(dn, {})).get(name))


class InMemorySession(DirectorySession):
    """A session bound to one :class:`InMemoryServer`."""

    def __init__(self, server: InMemoryServer) -> None:
        self._server = server
        self._closed = False

    @property
    def address(self) -> str:
        return self._server.address

    @property
    def closed(self) -> bool:
        return self._closed

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: list[str],
        scope: Scope = Scope.SUBTREE,
    ) -> list[Entry]:
        if self._closed:
            raise DirectoryConnectionError(self.address, "session is closed")
        if self._server.search_error is not None:
            raise QueryError(base, search_filter, self._server.search_error)
        match = _EQUALITY_FILTER.match(search_filter.strip())
        if match is None:
            raise QueryError(base, search_filter, "unsupported filter")
        attr, wanted = match.group(1), match.group(2).strip().lower()

        wanted_attrs = {a.lower() for a in attributes}
        results: list[Entry] = []
        with self._server._lock:
            for dn, attrs in self._server.entries.items():
                if not _in_scope(dn, base, scope):
                    continue
                entry = Entry(dn, attrs)
                values = [v.lower() for v in entry.get(attr)]
                if wanted != "*" and wanted not in values:
                    continue
                if wanted == "*" and not values:
                    continue
                projected = {k: list(v) for k, v in attrs.items() if k.lower() in wanted_attrs}
                results.append(Entry(dn, projected))
        return results

    def modify(self, dn: str, attribute: str, value: str) -> None:
        if self._closed:
            raise ModifyError(dn, attribute, "session is closed")
        server = self._server
        with server._lock:
            if dn.lower() in server.failing_dns:
                server.writes.append(RecordedWrite(server.address, dn, attribute, value, False))
                raise ModifyError(dn, attribute, "Insufficient access")
            attrs = server.entries.setdefault(dn, {})
            for key in list(attrs):
                if key.lower() == attribute.lower():
                    del attrs[key]
            attrs[attribute] = [value]
            server.writes.append(RecordedWrite(server.address, dn, attribute, value, True))

    def close(self) -> None:
        self._closed = True


class InMemoryDirectory:
    """A set of simulated servers addressed by host name.

    Calling the directory opens a session, so an instance can be passed
    wherever a :data:`~repl_rotator.directory.base.Connector` is expected.
    """

    def __init__(self) -> None:
        self._servers: dict[str, InMemoryServer] = {}
        self.unreachable: set[str] = set()
        self.sessions: list[InMemorySession] = []

    def server(self, address: str) -> InMemoryServer:
        """Return the server for *address*, creating it on first use."""
        if address not in self._servers:
            self._servers[address] = InMemoryServer(address)
        return self._servers[address]

    def connect(self, address: str, port: Optional[int] = None) -> InMemorySession:
        if address in self.unreachable:
            raise DirectoryConnectionError(address, "Can't contact LDAP server")
        session = InMemorySession(self.server(address))
        self.sessions.append(session)
        return session

    __call__ = connect

    def all_writes(self) -> list[RecordedWrite]:
        """Every write recorded across all servers, in server creation order."""
        return [w for s in self._servers.values() for w in s.writes]


def sample_directory(supplier: str, base_dn: str = "cn=config") -> InMemoryDirectory:
    """Build a directory with one supplier and two consumer agreements."""
    directory = InMemoryDirectory()
    server = directory.server(supplier)
    for index in (1, 2):
        name = f"agreement-to-consumer{index}"
        server.add_entry(
            f"cn={name},cn=replica,cn=dc\\3Dexample\\2Cdc\\3Dcom,cn=mapping tree,{base_dn}",
            {
                "objectClass": ["top", "nsds5replicationagreement"],
                "cn": [name],
                "nsDS5ReplicaHost": [f"consumer{index}.example.com"],
                "nsDS5ReplicaPort": ["389"],
                "nsDS5ReplicaBindDN": ["cn=replication manager,cn=config"],
                "nsds5ReplicaEnabled": ["on"],
            },
        )
    return directory


__all__ = [
    "InMemoryDirectory",
    "InMemoryServer",
    "InMemorySession",
    "RecordedWrite",
    "sample_directory",
]
