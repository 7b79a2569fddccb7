from __future__ import annotations

import dataclasses

import pytest
from pymacaroons import Macaroon
from pymacaroons.serializers import JsonSerializer

from extmigrate.migration_spec import build_migration_request, decode_macaroon
from extmigrate.models import (
    AccountDetails,
    ControllerEndpoint,
    MigrationRequest,
    SpecResolutionFailed,
    StoreNotFound,
    TokenDecodeFailed,
)


class FakeStore:
    def __init__(
        self,
        *,
        models: dict[tuple[str, str], str] | None = None,
        controllers: dict[str, ControllerEndpoint] | None = None,
        accounts: dict[str, AccountDetails] | None = None,
    ) -> None:
        self.models = models or {}
        self.controllers = controllers or {}
        self.accounts = accounts or {}
        self.calls: list[str] = []

    def current_controller(self) -> str:
        return "ctrl-a"

    def model_uuid_by_name(self, controller_name: str, model_name: str) -> str:
        self.calls.append("model")
        try:
            return self.models[(controller_name, model_name)]
        except KeyError:
            raise StoreNotFound(f"model {controller_name}:{model_name} not found") from None

    def controller_by_name(self, name: str) -> ControllerEndpoint:
        self.calls.append("controller")
        try:
            return self.controllers[name]
        except KeyError:
            raise StoreNotFound(f"controller {name} not found") from None

    def account_details(self, controller_name: str) -> AccountDetails:
        self.calls.append("account")
        try:
            return self.accounts[controller_name]
        except KeyError:
            raise StoreNotFound(
                f"account details for controller {controller_name} not found"
            ) from None


def _scenario_store(macaroon: str = "") -> FakeStore:
    return FakeStore(
        models={("ctrl-a", "model-a"): "U1"},
        controllers={
            "ctrl-b": ControllerEndpoint(
                name="ctrl-b",
                controller_uuid="CTRLID",
                api_endpoints=("h:1",),
                ca_cert="C",
            )
        },
        accounts={"ctrl-b": AccountDetails(user="u", password="p", macaroon=macaroon)},
    )


def _macaroon() -> Macaroon:
    return Macaroon(location="ctrl-b", identifier="login-1", key="root-key")


def test_build_migration_request_end_to_end_scenario() -> None:
    request = build_migration_request(_scenario_store(), "ctrl-a", "model-a", "ctrl-b")

    assert request.external_control is True
    assert request.model_uuid == "U1"
    assert request.target_controller_uuid == "CTRLID"
    assert request.target_addrs == ("h:1",)
    assert request.target_ca_cert == "C"
    assert request.target_user == "u"
    assert request.target_password == "p"
    assert request.target_macaroons == ()


def test_build_migration_request_resolves_in_order() -> None:
    store = _scenario_store()

    build_migration_request(store, "ctrl-a", "model-a", "ctrl-b")

    assert store.calls == ["model", "controller", "account"]


def test_migration_request_is_immutable_and_always_externally_controlled() -> None:
    request = build_migration_request(_scenario_store(), "ctrl-a", "model-a", "ctrl-b")

    with pytest.raises(dataclasses.FrozenInstanceError):
        request.model_uuid = "other"  # type: ignore[misc]
    with pytest.raises(TypeError):
        MigrationRequest(  # type: ignore[call-arg]
            model_uuid="U1",
            target_controller_uuid="CTRLID",
            target_addrs=("h:1",),
            target_ca_cert="C",
            target_user="u",
            target_password="p",
            external_control=False,
        )


@pytest.mark.parametrize(
    ("store", "message"),
    [
        (FakeStore(), "model ctrl-a:model-a not found"),
        (
            FakeStore(models={("ctrl-a", "model-a"): "U1"}),
            "controller ctrl-b not found",
        ),
        (
            FakeStore(
                models={("ctrl-a", "model-a"): "U1"},
                controllers={
                    "ctrl-b": ControllerEndpoint(
                        name="ctrl-b", controller_uuid="CTRLID", api_endpoints=("h:1",)
                    )
                },
            ),
            "account details for controller ctrl-b not found",
        ),
    ],
)
def test_build_migration_request_wraps_lookup_failures(store: FakeStore, message: str) -> None:
    with pytest.raises(SpecResolutionFailed, match=message) as excinfo:
        build_migration_request(store, "ctrl-a", "model-a", "ctrl-b")

    assert isinstance(excinfo.value.__cause__, StoreNotFound)


def test_build_migration_request_decodes_binary_macaroon() -> None:
    mac = _macaroon()

    request = build_migration_request(
        _scenario_store(mac.serialize()), "ctrl-a", "model-a", "ctrl-b"
    )

    assert len(request.target_macaroons) == 1
    assert len(request.target_macaroons[0]) == 1
    assert request.target_macaroons[0][0].signature == mac.signature


def test_decode_macaroon_accepts_json_form() -> None:
    mac = _macaroon()

    decoded = decode_macaroon(mac.serialize(serializer=JsonSerializer()))

    assert decoded.signature == mac.signature
    assert decoded.location == "ctrl-b"


def test_build_migration_request_rejects_undecodable_macaroon() -> None:
    with pytest.raises(TokenDecodeFailed, match="unmarshalling macaroon"):
        build_migration_request(
            _scenario_store("{not json"), "ctrl-a", "model-a", "ctrl-b"
        )
