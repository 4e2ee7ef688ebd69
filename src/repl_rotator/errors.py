"""Exception taxonomy for credential rotation.

Fatal errors (:class:`DirectoryConnectionError`, :class:`QueryError`) abort a
whole rotation cycle. Per-agreement errors (:class:`ResolutionFailure`,
:class:`ModifyError`, :class:`PartialInconsistency`) are collected into the
cycle report and never abort sibling agreements.
"""
from __future__ import annotations


class RotatorError(Exception):
    """Base class for all repl-rotator errors."""


class ConfigError(RotatorError):
    """Raised when the configuration file cannot be read or is invalid."""


class DirectoryConnectionError(RotatorError, ConnectionError):
    """Raised when a directory session cannot be established or bound."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Cannot connect to directory server {address!r}: {reason}")


class QueryError(RotatorError):
    """Raised when a directory search fails."""

    def __init__(self, base: str, search_filter: str, reason: str) -> None:
        self.base = base
        self.search_filter = search_filter
        self.reason = reason
        super().__init__(
            f"Search of {base!r} with filter {search_filter!r} failed: {reason}"
        )


class ModifyError(RotatorError):
    """Raised when a single attribute write fails."""

    def __init__(self, dn: str, attribute: str, reason: str) -> None:
        self.dn = dn
        self.attribute = attribute
        self.reason = reason
        super().__init__(f"Cannot replace {attribute!r} on {dn!r}: {reason}")


class ResolutionFailure(RotatorError):
    """Raised when no credential value can be determined for an agreement."""

    def __init__(self, agreement_name: str, reason: str) -> None:
        self.agreement_name = agreement_name
        self.reason = reason
        super().__init__(f"No credential for agreement {agreement_name!r}: {reason}")


class PolicyUnsatisfiableError(ResolutionFailure):
    """Raised when the password policy cannot produce a valid value."""

    def __init__(self, reason: str, agreement_name: str = "") -> None:
        super().__init__(agreement_name, reason)


class PartialInconsistency(RotatorError):
    """Supplier side rotated, consumer side did not.

    The agreement is left with mismatched credentials and needs manual
    reconciliation; it is never retried automatically within a cycle.
    """

    def __init__(self, agreement_name: str, reason: str, remediation: list[str]) -> None:
        self.agreement_name = agreement_name
        self.reason = reason
        self.remediation = list(remediation)
        super().__init__(
            f"Agreement {agreement_name!r} is inconsistent: supplier updated, "
            f"consumer not ({reason})"
        )


__all__ = [
    "ConfigError",
    "DirectoryConnectionError",
    "ModifyError",
    "PartialInconsistency",
    "PolicyUnsatisfiableError",
    "QueryError",
    "ResolutionFailure",
    "RotatorError",
]
