"""Credential resolution and password generation.

:class:`CredentialResolver` picks the new credential for each agreement in
strict precedence order:

1. an explicit value configured for the agreement name,
2. the organisation-wide default value,
3. a freshly generated value, if generation is enabled,
4. otherwise the agreement is *unresolved* and must not be rotated.

:class:`PasswordGenerator` draws from :mod:`secrets` and re-validates every
value it produces against the same policy.
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Optional

from repl_rotator.catalog import ReplicationAgreement
from repl_rotator.config import PasswordPolicy
from repl_rotator.errors import PolicyUnsatisfiableError, ResolutionFailure

logger = logging.getLogger(__name__)

SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

_CLASSES: dict[str, str] = {
    "lowercase": string.ascii_lowercase,
    "uppercase": string.ascii_uppercase,
    "digits": string.digits,
    "symbols": SYMBOLS,
}


class PasswordGenerator:
    """Generates values satisfying a :class:`~repl_rotator.config.PasswordPolicy`.

    Parameters
    ----------
    policy:
        Length, character classes, exclusions and retry budget.
    """

    def __init__(self, policy: PasswordPolicy) -> None:
        self._policy = policy
        self._required = self._required_classes()
        self._alphabet = "".join(
            ch for chars in self._required.values() for ch in chars
        )

    def _required_classes(self) -> dict[str, str]:
        policy = self._policy
        enabled = {
            "lowercase": policy.include_lowercase,
            "uppercase": policy.include_uppercase,
            "digits": policy.include_digits,
            "symbols": policy.include_symbols,
        }
        excluded = set(policy.exclude_chars)
        return {
            name: "".join(ch for ch in _CLASSES[name] if ch not in excluded)
            for name, on in enabled.items()
            if on
        }

    @property
    def alphabet(self) -> str:
        return self._alphabet

    def check_satisfiable(self) -> None:
        """Reject policies that no value could ever satisfy.

        Raises
        ------
        PolicyUnsatisfiableError
        """
        if not self._required:
            raise PolicyUnsatisfiableError("no character classes are enabled")
        for name, chars in self._required.items():
            if not chars:
                raise PolicyUnsatisfiableError(
                    f"every {name} character is excluded but {name} are required"
                )
        if self._policy.length < len(self._required):
            raise PolicyUnsatisfiableError(
                f"length {self._policy.length} cannot hold one character from "
                f"each of {len(self._required)} required classes"
            )

    def generate(self) -> str:
        """Return a new value that passes :meth:`validate`.

        Raises
        ------
        PolicyUnsatisfiableError
            If the policy is contradictory or ``max_attempts`` candidates
            all failed validation.
        """
        self.check_satisfiable()
        for attempt in range(1, self._policy.max_attempts + 1):
            candidate = "".join(
                secrets.choice(self._alphabet) for _ in range(self._policy.length)
            )
            if not self.validate(candidate):
                return candidate
            logger.debug("Generated candidate %d rejected by policy", attempt)
        raise PolicyUnsatisfiableError(
            f"no valid value after {self._policy.max_attempts} attempts"
        )

    def validate(self, value: str) -> list[str]:
        """Return the policy violations of *value* (empty when valid)."""
        problems: list[str] = []
        if len(value) < self._policy.length:
            problems.append(f"shorter than {self._policy.length} characters")
        banned = sorted(set(value) & set(self._policy.exclude_chars))
        if banned:
            problems.append(f"contains excluded characters {''.join(banned)!r}")
        for name in self._required:
            if not any(ch in _CLASSES[name] for ch in value):
                problems.append(f"missing {name}")
        return problems

    def describe(self) -> str:
        """Human-readable summary of the generation policy."""
        policy = self._policy
        lines = ["Password Policy:", f"- Length: {policy.length} characters"]
        if policy.include_lowercase:
            lines.append("- Includes lowercase letters (a-z)")
        if policy.include_uppercase:
            lines.append("- Includes uppercase letters (A-Z)")
        if policy.include_digits:
            lines.append("- Includes numbers (0-9)")
        if policy.include_symbols:
            lines.append(f"- Includes special characters ({SYMBOLS})")
        if policy.exclude_chars:
            lines.append(f"- Excludes confusing characters: {policy.exclude_chars}")
        lines.append(f"- Generation enabled: {'yes' if policy.generate else 'no'}")
        return "\n".join(lines)


def password_strength(value: str) -> str:
    """Coarse strength label based on length and character variety."""
    score = 0
    if len(value) >= 12:
        score += 2
    elif len(value) >= 8:
        score += 1
    score += sum(1 for chars in _CLASSES.values() if any(ch in chars for ch in value))
    if score >= 6:
        return "Very Strong"
    if score >= 5:
        return "Strong"
    if score >= 3:
        return "Medium"
    return "Weak"


class CredentialSource(str, Enum):
    """Where a resolved credential came from."""

    EXPLICIT = "explicit"
    DEFAULT = "default"
    GENERATED = "generated"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class ResolvedCredential:
    """The resolution result for one agreement.

    ``value`` is None exactly when ``source`` is UNRESOLVED, in which case
    ``reason`` explains why.
    """

    agreement_name: str
    source: CredentialSource
    value: Optional[str] = None
    reason: str = ""

    @property
    def resolved(self) -> bool:
        return self.source is not CredentialSource.UNRESOLVED

    def to_dict(self, include_value: bool = False) -> dict[str, object]:
        """Serialise to a plain dictionary; the value is masked by default."""
        shown: Optional[str] = None
        if self.value is not None:
            shown = self.value if include_value else "***REDACTED***"
        return {
            "agreement_name": self.agreement_name,
            "source": self.source.value,
            "value": shown,
            "reason": self.reason,
        }


class CredentialAssignment:
    """Per-cycle mapping of agreement name to resolved credential.

    Holds exactly one entry per agreement, resolved or not.
    """

    def __init__(self, entries: Iterable[ResolvedCredential]) -> None:
        self._entries: dict[str, ResolvedCredential] = {}
        for entry in entries:
            if entry.agreement_name in self._entries:
                raise ValueError(f"Duplicate agreement name {entry.agreement_name!r}")
            self._entries[entry.agreement_name] = entry

    def __getitem__(self, agreement_name: str) -> ResolvedCredential:
        return self._entries[agreement_name]

    def __contains__(self, agreement_name: object) -> bool:
        return agreement_name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, agreement_name: str) -> Optional[ResolvedCredential]:
        return self._entries.get(agreement_name)

    def value_for(self, agreement_name: str) -> str:
        """Return the credential for *agreement_name*.

        Raises
        ------
        ResolutionFailure
            If the agreement is unresolved.
        KeyError
            If the agreement is not part of this assignment.
        """
        entry = self._entries[agreement_name]
        if entry.value is None:
            raise ResolutionFailure(agreement_name, entry.reason)
        return entry.value

    def resolved(self) -> dict[str, str]:
        return {
            name: entry.value
            for name, entry in self._entries.items()
            if entry.value is not None
        }

    def unresolved(self) -> list[ResolvedCredential]:
        return [entry for entry in self._entries.values() if not entry.resolved]


class CredentialResolver:
    """Resolves new credentials for agreements from a password policy.

    Pure with respect to the directory: it reads only configuration.

    Parameters
    ----------
    policy:
        Explicit values, default value, and generation rules.
    generator:
        Generator to use when generation is enabled. Defaults to one built
        from *policy*.
    """

    def __init__(
        self,
        policy: PasswordPolicy,
        generator: Optional[PasswordGenerator] = None,
    ) -> None:
        self._policy = policy
        self._generator = generator or PasswordGenerator(policy)

    def resolve_one(self, agreement: ReplicationAgreement) -> ResolvedCredential:
        name = agreement.name
        explicit = self._policy.predefined.get(name)
        if explicit:
            return ResolvedCredential(name, CredentialSource.EXPLICIT, explicit)
        if self._policy.default:
            return ResolvedCredential(name, CredentialSource.DEFAULT, self._policy.default)
        if self._policy.generate:
            try:
                value = self._generator.generate()
            except PolicyUnsatisfiableError as exc:
                logger.error("Cannot generate credential for %s: %s", name, exc.reason)
                return ResolvedCredential(
                    name, CredentialSource.UNRESOLVED, reason=f"policy unsatisfiable: {exc.reason}"
                )
            return ResolvedCredential(name, CredentialSource.GENERATED, value)
        return ResolvedCredential(
            name,
            CredentialSource.UNRESOLVED,
            reason="no predefined or default credential and generation is disabled",
        )

    def resolve(self, agreements: Iterable[ReplicationAgreement]) -> CredentialAssignment:
        """Resolve every agreement; unresolved ones are marked, not dropped."""
        entries = [self.resolve_one(agreement) for agreement in agreements]
        for entry in entries:
            if entry.resolved:
                logger.info("Credential for %s: using %s value", entry.agreement_name, entry.source.value)
            else:
                logger.warning("Credential for %s: unresolved (%s)", entry.agreement_name, entry.reason)
        return CredentialAssignment(entries)


__all__ = [
    "SYMBOLS",
    "CredentialAssignment",
    "CredentialResolver",
    "CredentialSource",
    "PasswordGenerator",
    "ResolvedCredential",
    "password_strength",
]
