#!/usr/bin/env python3
"""Example: preview and execute a rotation against simulated servers

Builds an in-memory supplier with two agreements, previews the rotation,
then executes it and shows what each server received.

Usage:
    python examples/01_preview_rotation.py

Requirements:
    pip install repl-rotator
"""
from __future__ import annotations

import repl_rotator
from repl_rotator import (
    AgreementCatalog,
    CredentialResolver,
    DualSidedUpdater,
    ExecutionMode,
    PasswordPolicy,
    RotationOrchestrator,
)
from repl_rotator.directory import sample_directory


def main() -> None:
    print(f"repl-rotator version: {repl_rotator.__version__}")

    directory = sample_directory("supplier1.example.com")
    policy = PasswordPolicy(
        predefined={"agreement-to-consumer1": "Explicit!Value42"},
        generate=True,
    )

    with directory.connect("supplier1.example.com") as session:
        orchestrator = RotationOrchestrator(
            AgreementCatalog(session),
            CredentialResolver(policy),
            DualSidedUpdater(session, directory),
        )

        preview = orchestrator.run_cycle(mode=ExecutionMode.PREVIEW)
        for result in preview.results:
            for outcome in result.outcomes:
                print(f"{result.name}: {outcome.describe()}")
        print(f"Writes after preview: {len(directory.all_writes())}")

        report = orchestrator.run_cycle(mode=ExecutionMode.EXECUTE)
        print(f"Counts: {report.counts()}")

    for write in directory.all_writes():
        print(f"  {write.server}: {write.attribute} on {write.dn}")


if __name__ == "__main__":
    main()
