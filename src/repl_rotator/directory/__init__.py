"""Directory sessions — abstract contract plus in-memory simulation.

The python-ldap implementation lives in
:mod:`repl_rotator.directory.ldap_session` and is imported on demand so the
rest of the package works without the ``ldap`` extra installed.
"""
from __future__ import annotations

from repl_rotator.directory.base import Connector, DirectorySession, Entry, Scope
from repl_rotator.directory.memory import (
    InMemoryDirectory,
    InMemoryServer,
    InMemorySession,
    RecordedWrite,
    sample_directory,
)

__all__ = [
    "Connector",
    "DirectorySession",
    "Entry",
    "InMemoryDirectory",
    "InMemoryServer",
    "InMemorySession",
    "RecordedWrite",
    "Scope",
    "sample_directory",
]
