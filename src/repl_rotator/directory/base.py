"""Directory session contract.

A :class:`DirectorySession` is an owned, explicitly closed connection to one
directory server. Sessions are not safe for concurrent in-flight operations;
implementations serialize their wire calls internally.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional


class Scope(str, Enum):
    """Search scope."""

    BASE = "base"
    ONELEVEL = "onelevel"
    SUBTREE = "subtree"


@dataclass(frozen=True)
class Entry:
    """A search result entry.

    Attribute names are matched case-insensitively, as LDAP does.
    """

    dn: str
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def get(self, name: str) -> list[str]:
        """Return all values of *name*, or an empty list."""
        wanted = name.lower()
        for key, values in self.attributes.items():
            if key.lower() == wanted:
                return list(values)
        return []

    def first(self, name: str) -> Optional[str]:
        """Return the first value of *name*, or None if absent."""
        values = self.get(name)
        return values[0] if values else None


class DirectorySession(ABC):
    """One bound connection to a directory server."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Host name of the server this session is bound to."""

    @abstractmethod
    def search(
        self,
        base: str,
        search_filter: str,
        attributes: list[str],
        scope: Scope = Scope.SUBTREE,
    ) -> list[Entry]:
        """Search the directory.

        Raises
        ------
        DirectoryConnectionError
            If the session is closed.
        QueryError
            If the search itself fails.
        """

    @abstractmethod
    def modify(self, dn: str, attribute: str, value: str) -> None:
        """Replace all values of *attribute* on *dn* with *value*.

        Raises
        ------
        ModifyError
            If the write is rejected or the session is unusable.
        """

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Safe to call more than once."""

    def __enter__(self) -> "DirectorySession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# Opens a session to the named consumer host (port may be None for the default).
Connector = Callable[[str, Optional[int]], DirectorySession]


__all__ = ["Connector", "DirectorySession", "Entry", "Scope"]
