"""End-to-end rotation against simulated supplier and consumers."""

from __future__ import annotations

import pytest

from repl_rotator import (
    AgreementCatalog,
    AgreementStatus,
    CredentialResolver,
    CredentialSource,
    DualSidedUpdater,
    ExecutionMode,
    PasswordPolicy,
    RotationOrchestrator,
    Side,
    WriteStatus,
)
from repl_rotator.directory import InMemoryDirectory
from repl_rotator.updater import DEFAULT_MANAGER_DN

SUPPLIER = "s1.example.com"
DN_A = "cn=agreement-A,cn=replica,cn=mapping tree,cn=config"
DN_B = "cn=agreement-B,cn=replica,cn=mapping tree,cn=config"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _agreement_entry(name: str, consumer: str) -> dict[str, list[str]]:
    return {
        "objectClass": ["top", "nsds5replicationagreement"],
        "cn": [name],
        "nsDS5ReplicaHost": [consumer],
        "nsDS5ReplicaBindDN": [DEFAULT_MANAGER_DN],
    }


@pytest.fixture()
def directory() -> InMemoryDirectory:
    directory = InMemoryDirectory()
    supplier = directory.server(SUPPLIER)
    supplier.add_entry(DN_A, _agreement_entry("agreement-A", "c1"))
    supplier.add_entry(DN_B, _agreement_entry("agreement-B", "c2"))
    return directory


@pytest.fixture()
def policy() -> PasswordPolicy:
    return PasswordPolicy(predefined={"agreement-A": "Explicit!A1"}, default="D", generate=False)


def _orchestrator(directory: InMemoryDirectory, policy: PasswordPolicy) -> RotationOrchestrator:
    session = directory.connect(SUPPLIER)
    return RotationOrchestrator(
        AgreementCatalog(session),
        CredentialResolver(policy),
        DualSidedUpdater(session, directory),
    )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestTwoAgreementRotation:
    def test_resolution_uses_explicit_then_default(
        self, directory: InMemoryDirectory, policy: PasswordPolicy
    ) -> None:
        agreements = AgreementCatalog(directory.connect(SUPPLIER)).discover()
        assignment = CredentialResolver(policy).resolve(agreements)
        assert assignment.resolved() == {"agreement-A": "Explicit!A1", "agreement-B": "D"}
        assert assignment["agreement-A"].source is CredentialSource.EXPLICIT
        assert assignment["agreement-B"].source is CredentialSource.DEFAULT

    def test_execute_succeeds_on_all_four_writes(
        self, directory: InMemoryDirectory, policy: PasswordPolicy
    ) -> None:
        report = _orchestrator(directory, policy).run_cycle(mode=ExecutionMode.EXECUTE)
        outcomes = [o for r in report.results for o in r.outcomes]
        assert len(outcomes) == 4
        assert all(o.status is WriteStatus.APPLIED for o in outcomes)

        consumer_b = report.results[1].outcomes[1]
        assert consumer_b.side is Side.CONSUMER
        assert consumer_b.target.server == "c2"
        assert consumer_b.target.dn == DEFAULT_MANAGER_DN

        assert directory.server(SUPPLIER).attribute(DN_A, "nsds5ReplicaCredentials") == ["Explicit!A1"]
        assert directory.server("c1").attribute(DEFAULT_MANAGER_DN, "userPassword") == ["Explicit!A1"]
        assert directory.server("c2").attribute(DEFAULT_MANAGER_DN, "userPassword") == ["D"]

    def test_supplier_failure_isolated_to_its_agreement(
        self, directory: InMemoryDirectory, policy: PasswordPolicy
    ) -> None:
        directory.server(SUPPLIER).fail_writes_to(DN_A)
        report = _orchestrator(directory, policy).run_cycle(mode=ExecutionMode.EXECUTE)

        result_a, result_b = report.results
        assert result_a.status is AgreementStatus.FAILED
        assert [o.status for o in result_a.outcomes] == [WriteStatus.FAILED, WriteStatus.NOT_ATTEMPTED]
        assert result_b.status is AgreementStatus.SUCCEEDED
        assert [o.status for o in result_b.outcomes] == [WriteStatus.APPLIED, WriteStatus.APPLIED]
        assert directory.server("c1").writes == []

    def test_preview_then_execute_same_plan(
        self, directory: InMemoryDirectory, policy: PasswordPolicy
    ) -> None:
        orchestrator = _orchestrator(directory, policy)
        preview = orchestrator.run_cycle(mode=ExecutionMode.PREVIEW)
        assert directory.all_writes() == []
        executed = orchestrator.run_cycle(mode=ExecutionMode.EXECUTE)
        assert [(o.target, o.value) for r in preview.results for o in r.outcomes] == [
            (o.target, o.value) for r in executed.results for o in r.outcomes
        ]
