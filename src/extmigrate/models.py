"""extmigrate data models: exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from extmigrate.names import MachineTag


def _coerce_float(value: Any, *, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def _coerce_positive_float(value: Any, *, default: float) -> float:
    parsed = _coerce_float(value, default=default)
    return parsed if parsed > 0 else default


# ---------------------------------------------------------------------------
# Lower-layer errors
# ---------------------------------------------------------------------------


class StoreError(RuntimeError):
    """Raised when the local client store cannot answer a lookup."""


class StoreNotFound(StoreError):
    """Raised when the client store has no entry for a name."""


class TransportError(RuntimeError):
    """Raised when an API call cannot be delivered or its reply cannot be read."""


class RpcError(RuntimeError):
    """Raised when the API server answers a call with an error envelope."""

    def __init__(self, message: str, *, code: str = "") -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Command errors
# ---------------------------------------------------------------------------


class MigrateError(RuntimeError):
    """Base class for failures that terminate a migrate invocation."""


class ArgumentError(MigrateError):
    """Raised when the command line cannot be resolved."""


class MissingArgument(ArgumentError):
    def __init__(self, field_name: str) -> None:
        super().__init__(f"{field_name} not specified")
        self.field_name = field_name


class TooManyArguments(ArgumentError):
    def __init__(self) -> None:
        super().__init__("too many arguments specified")


class InvalidIdentity(ArgumentError):
    """Raised when the machine tag argument is malformed."""


class SpecResolutionFailed(MigrateError):
    """Raised when the model, controller or account cannot be resolved."""


class TokenDecodeFailed(MigrateError):
    """Raised when a stored macaroon cannot be deserialized."""


class InitiateFailed(MigrateError):
    """Raised when the controller refuses or cannot receive InitiateMigration."""


class CoordinatorConnectFailed(MigrateError):
    """Raised when the migration coordinator session cannot be opened or is lost."""


class CoordinatorNotReady(MigrateError):
    """Raised when the coordinator never reports the initiated migration."""


class MigrationInterrupted(MigrateError):
    def __init__(self, migration_id: str = "") -> None:
        if migration_id:
            super().__init__(f"interrupted; migration {migration_id} was started and not forced to ABORTDONE")
        else:
            super().__init__("interrupted before the controller confirmed the migration")
        self.migration_id = migration_id


class PhaseTransitionRejected(MigrateError):
    def __init__(self, phase: Phase, reason: str, *, code: str = "") -> None:
        super().__init__(f"setting phase to {phase.value}: {reason}")
        self.phase = phase
        self.reason = reason
        self.code = code


# ---------------------------------------------------------------------------
# Migration vocabulary
# ---------------------------------------------------------------------------


class Phase(Enum):
    """Migration lifecycle phases as named by the coordinator."""

    UNKNOWN = "UNKNOWN"
    NONE = "NONE"
    QUIESCE = "QUIESCE"
    IMPORT = "IMPORT"
    PROCESSRELATIONS = "PROCESSRELATIONS"
    VALIDATION = "VALIDATION"
    SUCCESS = "SUCCESS"
    LOGTRANSFER = "LOGTRANSFER"
    REAP = "REAP"
    REAPFAILED = "REAPFAILED"
    DONE = "DONE"
    ABORT = "ABORT"
    ABORTDONE = "ABORTDONE"

    @classmethod
    def parse(cls, value: Any) -> "Phase":
        text = str(value or "").strip().upper()
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


FORCED_PHASES = (Phase.ABORT, Phase.ABORTDONE)


@dataclass(frozen=True)
class MachineIdentity:
    tag: MachineTag
    password: str = field(repr=False)
    nonce: str = field(repr=False)


@dataclass(frozen=True)
class ControllerEndpoint:
    name: str
    controller_uuid: str
    api_endpoints: tuple[str, ...]
    ca_cert: str = field(default="", repr=False)


@dataclass(frozen=True)
class AccountDetails:
    user: str
    password: str = field(default="", repr=False)
    macaroon: str = field(default="", repr=False)


@dataclass(frozen=True)
class MigrationStatus:
    migration_id: str
    phase: Phase
    model_uuid: str = ""


@dataclass(frozen=True)
class MigrationRequest:
    """Everything the source controller needs to start an externally controlled migration.

    ``external_control`` is fixed: the operator (this tool) drives every phase
    transition the coordinator does not take on its own.
    """

    model_uuid: str
    target_controller_uuid: str
    target_addrs: tuple[str, ...]
    target_ca_cert: str = field(repr=False)
    target_user: str
    target_password: str = field(repr=False)
    target_macaroons: tuple[tuple[Any, ...], ...] = field(default=(), repr=False)
    external_control: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ReadinessConfig:
    mode: str
    timeout_seconds: float
    poll_interval_seconds: float
    delay_seconds: float


@dataclass(frozen=True)
class MigrateConfig:
    request_timeout_seconds: float
    readiness: ReadinessConfig
    log_file: str
