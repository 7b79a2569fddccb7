"""Read-only access to the local client store (controllers, accounts, models)."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import yaml

from extmigrate.constants import ACCOUNTS_FILE, CONTROLLERS_FILE, MODELS_FILE
from extmigrate.models import AccountDetails, ControllerEndpoint, StoreError, StoreNotFound


class ClientStore(Protocol):
    def current_controller(self) -> str: ...

    def controller_by_name(self, name: str) -> ControllerEndpoint: ...

    def account_details(self, controller_name: str) -> AccountDetails: ...

    def model_uuid_by_name(self, controller_name: str, model_name: str) -> str: ...


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise StoreError(f"reading {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise StoreError(f"{path} must contain a YAML mapping")
    return loaded


def _controllers_section(payload: dict[str, Any], path: Path) -> dict[str, Any]:
    section = payload.get("controllers") or {}
    if not isinstance(section, dict):
        raise StoreError(f"{path}: 'controllers' must be a mapping")
    return section


class FileClientStore:
    """Client store backed by the YAML files in a data directory.

    Files are re-read on every lookup; the store never writes.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def _read(self, filename: str) -> tuple[Path, dict[str, Any]]:
        path = self.data_dir / filename
        return path, _load_yaml_mapping(path)

    def current_controller(self) -> str:
        _, payload = self._read(CONTROLLERS_FILE)
        name = str(payload.get("current-controller") or "").strip()
        if not name:
            raise StoreNotFound("no current controller")
        return name

    def controller_by_name(self, name: str) -> ControllerEndpoint:
        path, payload = self._read(CONTROLLERS_FILE)
        details = _controllers_section(payload, path).get(name)
        if not isinstance(details, dict):
            raise StoreNotFound(f"controller {name} not found")
        raw_endpoints = details.get("api-endpoints") or []
        if not isinstance(raw_endpoints, list):
            raise StoreError(f"controller {name}: 'api-endpoints' must be a list")
        endpoints = tuple(str(entry).strip() for entry in raw_endpoints if str(entry).strip())
        return ControllerEndpoint(
            name=name,
            controller_uuid=str(details.get("uuid") or ""),
            api_endpoints=endpoints,
            ca_cert=str(details.get("ca-cert") or ""),
        )

    def account_details(self, controller_name: str) -> AccountDetails:
        path, payload = self._read(ACCOUNTS_FILE)
        details = _controllers_section(payload, path).get(controller_name)
        if not isinstance(details, dict):
            raise StoreNotFound(f"account details for controller {controller_name} not found")
        user = str(details.get("user") or "").strip()
        if not user:
            raise StoreNotFound(f"account details for controller {controller_name} not found")
        return AccountDetails(
            user=user,
            password=str(details.get("password") or ""),
            macaroon=str(details.get("macaroon") or ""),
        )

    def _qualifying_user(self, controller_name: str) -> str:
        try:
            return self.account_details(controller_name).user
        except StoreNotFound:
            return ""

    def model_uuid_by_name(self, controller_name: str, model_name: str) -> str:
        path, payload = self._read(MODELS_FILE)
        controller_models = _controllers_section(payload, path).get(controller_name)
        models: Any = {}
        if isinstance(controller_models, dict):
            models = controller_models.get("models") or {}
        if not isinstance(models, dict):
            raise StoreError(f"{path}: models for controller {controller_name} must be a mapping")

        candidates = [model_name]
        if "/" not in model_name:
            user = self._qualifying_user(controller_name)
            if user:
                candidates.insert(0, f"{user}/{model_name}")
        for candidate in candidates:
            details = models.get(candidate)
            if isinstance(details, dict) and details.get("uuid"):
                return str(details["uuid"])

        if "/" not in model_name:
            matches = [
                str(details["uuid"])
                for key, details in models.items()
                if str(key).rpartition("/")[2] == model_name
                and isinstance(details, dict)
                and details.get("uuid")
            ]
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise StoreError(
                    f"model name {model_name!r} is ambiguous on controller {controller_name}; "
                    "qualify it as <owner>/<model>"
                )
        raise StoreNotFound(f"model {controller_name}:{model_name} not found")
