from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import Sequence

from extmigrate.api import open_controller_api, open_migration_master
from extmigrate.config import _resolve_log_path, load_migrate_config, resolve_data_dir
from extmigrate.constants import (
    ARGUMENT_FIELDS,
    COMMAND_ARGS,
    COMMAND_DOC,
    COMMAND_NAME,
    COMMAND_PURPOSE,
)
from extmigrate.migration_spec import build_migration_request, decode_macaroon
from extmigrate.models import (
    AccountDetails,
    ControllerEndpoint,
    InvalidIdentity,
    MachineIdentity,
    MigrateError,
    MigrationInterrupted,
    MissingArgument,
    SpecResolutionFailed,
    StoreError,
    TooManyArguments,
)
from extmigrate.names import InvalidTagError, parse_machine_tag
from extmigrate.sequencer import run_external_migration
from extmigrate.store import ClientStore, FileClientStore
from extmigrate.utils import _append_log


@dataclass(frozen=True)
class MigrateArgs:
    model: str
    target_controller: str
    identity: MachineIdentity


def resolve_arguments(tokens: Sequence[str]) -> MigrateArgs:
    for index, field_name in enumerate(ARGUMENT_FIELDS):
        if len(tokens) <= index:
            raise MissingArgument(field_name)
    if len(tokens) > len(ARGUMENT_FIELDS):
        raise TooManyArguments()

    model, target_controller, raw_tag, password, nonce = tokens
    # The machine credentials stand in for an agent running on the source
    # controller host; they authenticate the coordinator session only.
    try:
        tag = parse_machine_tag(raw_tag)
    except InvalidTagError as exc:
        raise InvalidIdentity(str(exc)) from exc
    return MigrateArgs(
        model=model,
        target_controller=target_controller,
        identity=MachineIdentity(tag=tag, password=password, nonce=nonce),
    )


def _resolve_source(
    store: ClientStore, controller_name: str
) -> tuple[ControllerEndpoint, AccountDetails]:
    try:
        return (
            store.controller_by_name(controller_name),
            store.account_details(controller_name),
        )
    except StoreError as exc:
        raise SpecResolutionFailed(str(exc)) from exc


def _resolve_source_controller(store: ClientStore, explicit: str | None) -> str:
    if explicit:
        return explicit
    try:
        return store.current_controller()
    except StoreError as exc:
        raise SpecResolutionFailed(
            f"{exc}; specify a controller with -c/--controller"
        ) from exc


def _cmd_migrate(args: argparse.Namespace) -> int:
    try:
        resolved = resolve_arguments(args.args)
    except MigrateError as exc:
        print(f"{COMMAND_NAME}: ERROR {exc}", file=sys.stderr)
        return 2

    data_dir = resolve_data_dir()
    config = load_migrate_config(data_dir)
    log_path = _resolve_log_path(data_dir, config)
    store = FileClientStore(data_dir)
    log_broken = False

    def _log(message: str) -> None:
        nonlocal log_broken
        if log_broken:
            return
        try:
            _append_log(log_path, f"{COMMAND_NAME}: {message}")
        except OSError as exc:
            log_broken = True
            print(f"{COMMAND_NAME}: WARN failed to write log {log_path}: {exc}", file=sys.stderr)

    def _emit(message: str) -> None:
        print(message, file=sys.stderr)
        _log(message)

    try:
        source_controller = _resolve_source_controller(store, args.controller)
        _log(
            f"model {source_controller}:{resolved.model} -> "
            f"{resolved.target_controller} as {resolved.identity.tag}"
        )
        request = build_migration_request(
            store,
            source_controller,
            resolved.model,
            resolved.target_controller,
        )
        source, source_account = _resolve_source(store, source_controller)
        source_macaroons = ()
        if source_account.macaroon:
            source_macaroons = ((decode_macaroon(source_account.macaroon),),)
        timeout = config.request_timeout_seconds

        migration_id = run_external_migration(
            request,
            resolved.identity,
            source,
            api_factory=lambda: open_controller_api(
                source,
                source_account,
                macaroons=source_macaroons,
                timeout=timeout,
            ),
            connector=lambda identity, endpoint, model_uuid: open_migration_master(
                identity,
                endpoint,
                model_uuid,
                timeout=timeout,
            ),
            readiness=config.readiness,
            emit=_emit,
        )
    except KeyboardInterrupt:
        _log("ERROR interrupted")
        print(f"{COMMAND_NAME}: ERROR interrupted", file=sys.stderr)
        return 130
    except MigrateError as exc:
        _log(f"ERROR {exc}")
        print(f"{COMMAND_NAME}: ERROR {exc}", file=sys.stderr)
        return 130 if isinstance(exc, MigrationInterrupted) else 1

    _log(f"migration {migration_id} aborted")
    print(migration_id)
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=COMMAND_NAME,
        usage=f"%(prog)s [-c CONTROLLER] {COMMAND_ARGS}",
        description=f"{COMMAND_PURPOSE} {COMMAND_DOC}",
    )
    parser.add_argument(
        "-c",
        "--controller",
        default=None,
        help="Source controller hosting the model (default: the current controller)",
    )
    parser.add_argument("args", nargs="*", help=COMMAND_ARGS)
    parser.set_defaults(handler=_cmd_migrate)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    return int(handler(args))
