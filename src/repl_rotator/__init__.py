"""repl-rotator — replication agreement credential rotation for 389 Directory Server.

Public API
----------
The stable public surface is everything exported from this module.

Quick start
-----------
::

    from repl_rotator import (
        AgreementCatalog, CredentialResolver, DualSidedUpdater,
        RotationOrchestrator, ExecutionMode, load_config,
    )
    from repl_rotator.directory.ldap_session import LdapConnector, connect_from_config

    config = load_config("config.yaml")
    with connect_from_config(config.directory) as session:
        orchestrator = RotationOrchestrator(
            AgreementCatalog(session, config.directory.base_dn),
            CredentialResolver(config.password),
            DualSidedUpdater(
                session,
                LdapConnector(config.directory),
                manager_dn=config.directory.replication_manager_dn,
                bind_dn=config.directory.bind_dn,
            ),
        )
        report = orchestrator.run_cycle(mode=ExecutionMode.PREVIEW)
"""
from __future__ import annotations

__version__: str = "0.1.0"

from repl_rotator.audit import AuditEvent, RotationAuditLogger
from repl_rotator.catalog import AgreementCatalog, ReplicationAgreement, parse_enabled
from repl_rotator.config import (
    DirectoryConfig,
    LoggingConfig,
    MonitorConfig,
    PasswordPolicy,
    RotatorConfig,
    load_config,
)
from repl_rotator.errors import (
    ConfigError,
    DirectoryConnectionError,
    ModifyError,
    PartialInconsistency,
    PolicyUnsatisfiableError,
    QueryError,
    ResolutionFailure,
    RotatorError,
)
from repl_rotator.monitor import (
    AuthFailureEvent,
    FailureMonitor,
    LogWatcher,
    MonitorState,
    parse_log_line,
)
from repl_rotator.orchestrator import (
    AgreementResult,
    AgreementStatus,
    CycleReport,
    CycleStatus,
    RotationOrchestrator,
)
from repl_rotator.passwords import (
    CredentialAssignment,
    CredentialResolver,
    CredentialSource,
    PasswordGenerator,
    ResolvedCredential,
    password_strength,
)
from repl_rotator.updater import (
    DualSidedUpdater,
    ExecutionMode,
    Side,
    UpdateOutcome,
    WriteStatus,
    WriteTarget,
    derive_target,
    render_ldif,
    render_modify_command,
)

__all__ = [
    "__version__",
    # audit
    "AuditEvent",
    "RotationAuditLogger",
    # catalog
    "AgreementCatalog",
    "ReplicationAgreement",
    "parse_enabled",
    # config
    "DirectoryConfig",
    "LoggingConfig",
    "MonitorConfig",
    "PasswordPolicy",
    "RotatorConfig",
    "load_config",
    # errors
    "ConfigError",
    "DirectoryConnectionError",
    "ModifyError",
    "PartialInconsistency",
    "PolicyUnsatisfiableError",
    "QueryError",
    "ResolutionFailure",
    "RotatorError",
    # monitor
    "AuthFailureEvent",
    "FailureMonitor",
    "LogWatcher",
    "MonitorState",
    "parse_log_line",
    # orchestrator
    "AgreementResult",
    "AgreementStatus",
    "CycleReport",
    "CycleStatus",
    "RotationOrchestrator",
    # passwords
    "CredentialAssignment",
    "CredentialResolver",
    "CredentialSource",
    "PasswordGenerator",
    "ResolvedCredential",
    "password_strength",
    # updater
    "DualSidedUpdater",
    "ExecutionMode",
    "Side",
    "UpdateOutcome",
    "WriteStatus",
    "WriteTarget",
    "derive_target",
    "render_ldif",
    "render_modify_command",
]
