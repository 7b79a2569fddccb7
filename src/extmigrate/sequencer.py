"""Phase-force sequencing: initiate, wait for the coordinator, force ABORT then ABORTDONE."""

from __future__ import annotations

import time
from typing import Callable, Protocol

from extmigrate.models import (
    FORCED_PHASES,
    ControllerEndpoint,
    CoordinatorConnectFailed,
    CoordinatorNotReady,
    InitiateFailed,
    MachineIdentity,
    MigrationInterrupted,
    MigrationRequest,
    MigrationStatus,
    Phase,
    PhaseTransitionRejected,
    ReadinessConfig,
    RpcError,
    TransportError,
)
from extmigrate.names import InvalidTagError


class ControllerAPI(Protocol):
    def initiate_migration(self, request: MigrationRequest) -> str: ...

    def close(self) -> None: ...


class CoordinatorSession(Protocol):
    def set_phase(self, phase: Phase) -> None: ...

    def migration_status(self) -> MigrationStatus: ...

    def close(self) -> None: ...


ControllerAPIFactory = Callable[[], ControllerAPI]
CoordinatorConnector = Callable[[MachineIdentity, ControllerEndpoint, str], CoordinatorSession]


def initiate_migration(api_factory: ControllerAPIFactory, request: MigrationRequest) -> str:
    try:
        api = api_factory()
    except (InvalidTagError, RpcError, TransportError) as exc:
        raise InitiateFailed(f"connecting to controller: {exc}") from exc
    try:
        return api.initiate_migration(request)
    except (InvalidTagError, RpcError, TransportError) as exc:
        raise InitiateFailed(f"initiating migration: {exc}") from exc
    finally:
        api.close()


def connect_coordinator(
    connector: CoordinatorConnector,
    identity: MachineIdentity,
    source: ControllerEndpoint,
    model_uuid: str,
) -> CoordinatorSession:
    try:
        return connector(identity, source, model_uuid)
    except (RpcError, TransportError) as exc:
        raise CoordinatorConnectFailed(
            f"connecting to migration master on {source.name} as {identity.tag}: {exc}"
        ) from exc


def wait_for_coordinator(
    session: CoordinatorSession,
    migration_id: str,
    *,
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> MigrationStatus:
    """Poll the coordinator until it reports ``migration_id`` or ``timeout`` elapses.

    Error replies mean the coordinator has not picked the migration up yet and
    are retried; losing the connection is fatal.
    """
    deadline = monotonic() + timeout
    last_seen = "no status"
    while True:
        try:
            status = session.migration_status()
        except RpcError as exc:
            last_seen = str(exc)
        except TransportError as exc:
            raise CoordinatorConnectFailed(f"querying migration status: {exc}") from exc
        else:
            if status.migration_id == migration_id:
                return status
            last_seen = f"migration {status.migration_id or '<none>'} in phase {status.phase.value}"
        remaining = deadline - monotonic()
        if remaining <= 0:
            raise CoordinatorNotReady(
                f"migration {migration_id} not reported by coordinator after {timeout:g}s ({last_seen})"
            )
        sleep(min(interval, remaining))


def force_phase(session: CoordinatorSession, phase: Phase) -> None:
    try:
        session.set_phase(phase)
    except RpcError as exc:
        raise PhaseTransitionRejected(phase, str(exc), code=exc.code) from exc
    except TransportError as exc:
        raise CoordinatorConnectFailed(f"setting phase to {phase.value}: {exc}") from exc


def run_external_migration(
    request: MigrationRequest,
    identity: MachineIdentity,
    source: ControllerEndpoint,
    *,
    api_factory: ControllerAPIFactory,
    connector: CoordinatorConnector,
    readiness: ReadinessConfig,
    emit: Callable[[str], None] = print,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> str:
    try:
        migration_id = initiate_migration(api_factory, request)
    except KeyboardInterrupt as exc:
        raise MigrationInterrupted() from exc
    emit(f'Migration started with ID "{migration_id}"')

    try:
        if readiness.mode == "delay":
            sleep(readiness.delay_seconds)
        session = connect_coordinator(connector, identity, source, request.model_uuid)
    except KeyboardInterrupt as exc:
        raise MigrationInterrupted(migration_id) from exc
    try:
        if readiness.mode == "poll":
            wait_for_coordinator(
                session,
                migration_id,
                timeout=readiness.timeout_seconds,
                interval=readiness.poll_interval_seconds,
                sleep=sleep,
                monotonic=monotonic,
            )
        for phase in FORCED_PHASES:
            emit(f"Set phase to {phase.value}")
            force_phase(session, phase)
    except KeyboardInterrupt as exc:
        raise MigrationInterrupted(migration_id) from exc
    finally:
        session.close()
    return migration_id
