"""Control-plane API clients.

The controller serves JSON RPC over a websocket at ``wss://<addr>/api``, or at
``wss://<addr>/model/<uuid>/api`` for model-scoped facades. Each text frame
carries one envelope::

    {"request-id": 1, "type": "Controller", "version": 3,
     "request": "InitiateMigration", "params": {...}}

A reply echoes ``request-id`` and carries either ``response`` or
``error``/``error-code``. ``Admin.Login`` authenticates the connection it is
sent on, so each client keeps one socket open until it is closed.
"""

from __future__ import annotations

import json
import ssl
from typing import Any, Callable, Iterable

import websocket
from pymacaroons import Macaroon
from pymacaroons.serializers import JsonSerializer

from extmigrate.constants import (
    ADMIN_FACADE,
    API_SERVER_HOSTNAME,
    CONTROLLER_FACADE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    MIGRATION_MASTER_FACADE,
)
from extmigrate.models import (
    AccountDetails,
    ControllerEndpoint,
    MachineIdentity,
    MigrationRequest,
    MigrationStatus,
    Phase,
    RpcError,
    TransportError,
)
from extmigrate.names import InvalidTagError, controller_tag, model_tag, tag_id, user_tag
from extmigrate.utils import _compact_text


def _macaroon_params(macaroons: Iterable[Iterable[Macaroon]]) -> list[list[dict[str, Any]]]:
    serializer = JsonSerializer()
    return [
        [json.loads(mac.serialize(serializer=serializer)) for mac in mac_slice]
        for mac_slice in macaroons
    ]


def _migration_spec_params(request: MigrationRequest) -> dict[str, Any]:
    target_info: dict[str, Any] = {
        "controller-tag": controller_tag(request.target_controller_uuid),
        "addrs": list(request.target_addrs),
        "ca-cert": request.target_ca_cert,
        "auth-tag": user_tag(request.target_user),
        "password": request.target_password,
    }
    if request.target_macaroons:
        target_info["macaroons"] = json.dumps(_macaroon_params(request.target_macaroons))
    return {
        "model-tag": model_tag(request.model_uuid),
        "target-info": target_info,
        "external-control": request.external_control,
    }


def _ssl_options(ca_cert: str) -> dict[str, Any]:
    if not ca_cert:
        return {}
    try:
        context = ssl.create_default_context(cadata=ca_cert)
    except (ssl.SSLError, ValueError) as exc:
        raise TransportError(f"loading controller CA certificate: {exc}") from exc
    return {"context": context, "server_hostname": API_SERVER_HOSTNAME}


class RpcConnection:
    """One authenticated conversation with a controller, optionally scoped to a model."""

    def __init__(
        self,
        addrs: Iterable[str],
        *,
        ca_cert: str = "",
        model_uuid: str = "",
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        connect: Callable[..., Any] = websocket.create_connection,
    ) -> None:
        self.addrs = tuple(addrs)
        if not self.addrs:
            raise TransportError("no API addresses to connect to")
        self.model_uuid = model_uuid
        self.timeout = timeout
        self._sslopt = _ssl_options(ca_cert)
        self._connect = connect
        self._socket: Any = None
        self._addr: str | None = None
        self._request_id = 0

    @property
    def addr(self) -> str | None:
        return self._addr

    def _url(self, addr: str) -> str:
        if self.model_uuid:
            return f"wss://{addr}/model/{self.model_uuid}/api"
        return f"wss://{addr}/api"

    def _open(self, facade: str, request: str) -> Any:
        if self._socket is not None:
            return self._socket
        last_error: Exception | None = None
        for addr in self.addrs:
            try:
                sock = self._connect(self._url(addr), timeout=self.timeout, sslopt=self._sslopt)
            except (websocket.WebSocketException, OSError) as exc:
                last_error = exc
                continue
            self._socket = sock
            self._addr = addr
            return sock
        raise TransportError(
            f"{facade}.{request}: unable to reach {', '.join(self.addrs)}: {last_error}"
        )

    def call(
        self,
        facade: str,
        version: int,
        request: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        sock = self._open(facade, request)
        self._request_id += 1
        request_id = self._request_id
        payload = {
            "request-id": request_id,
            "type": facade,
            "version": version,
            "request": request,
            "params": params or {},
        }
        try:
            sock.send(json.dumps(payload))
            while True:
                raw = sock.recv()
                if not raw:
                    raise TransportError(f"{facade}.{request}: connection closed by {self._addr}")
                body = self._decode(raw, facade, request)
                # Frames answering an earlier, abandoned request are skipped.
                if body.get("request-id", request_id) == request_id:
                    break
        except (websocket.WebSocketException, OSError) as exc:
            self.close()
            raise TransportError(f"{facade}.{request}: {exc}") from exc
        return self._result(body, facade, request)

    def _decode(self, raw: str | bytes, facade: str, request: str) -> dict[str, Any]:
        try:
            body = json.loads(raw)
        except ValueError as exc:
            text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
            raise TransportError(
                f"{facade}.{request}: unreadable reply: {_compact_text(text)}"
            ) from exc
        if not isinstance(body, dict):
            raise TransportError(f"{facade}.{request}: reply must be a JSON object")
        return body

    def _result(self, body: dict[str, Any], facade: str, request: str) -> dict[str, Any]:
        if body.get("error"):
            raise RpcError(str(body["error"]), code=str(body.get("error-code") or ""))
        result = body.get("response") or {}
        if not isinstance(result, dict):
            raise TransportError(f"{facade}.{request}: 'response' must be a JSON object")
        return result

    def login(
        self,
        auth_tag: str,
        credentials: str,
        *,
        nonce: str = "",
        macaroons: Iterable[Iterable[Macaroon]] = (),
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"auth-tag": auth_tag, "credentials": credentials}
        if nonce:
            params["nonce"] = nonce
        mac_params = _macaroon_params(macaroons)
        if mac_params:
            params["macaroons"] = mac_params
        facade, version = ADMIN_FACADE
        return self.call(facade, version, "Login", params)

    def close(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()


class ControllerClient:
    def __init__(self, conn: RpcConnection) -> None:
        self.conn = conn

    def initiate_migration(self, request: MigrationRequest) -> str:
        facade, version = CONTROLLER_FACADE
        reply = self.conn.call(
            facade,
            version,
            "InitiateMigration",
            {"specs": [_migration_spec_params(request)]},
        )
        results = reply.get("results")
        if not isinstance(results, list) or len(results) != 1:
            raise TransportError(f"InitiateMigration: expected 1 result, got {results!r}")
        result = results[0] if isinstance(results[0], dict) else {}
        error = result.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(str(error.get("message") or error), code=str(error.get("code") or ""))
            raise RpcError(str(error))
        migration_id = str(result.get("migration-id") or "").strip()
        if not migration_id:
            raise TransportError("InitiateMigration: reply carries no migration id")
        return migration_id

    def close(self) -> None:
        self.conn.close()


class MigrationMasterClient:
    def __init__(self, conn: RpcConnection) -> None:
        self.conn = conn

    def set_phase(self, phase: Phase) -> None:
        facade, version = MIGRATION_MASTER_FACADE
        self.conn.call(facade, version, "SetPhase", {"phase": phase.value})

    def migration_status(self) -> MigrationStatus:
        facade, version = MIGRATION_MASTER_FACADE
        reply = self.conn.call(facade, version, "MigrationStatus")
        spec = reply.get("spec") if isinstance(reply.get("spec"), dict) else {}
        model_uuid = ""
        raw_model_tag = str(spec.get("model-tag") or "")
        if raw_model_tag:
            try:
                model_uuid = tag_id(raw_model_tag, kind="model")
            except InvalidTagError:
                model_uuid = ""
        return MigrationStatus(
            migration_id=str(reply.get("migration-id") or ""),
            phase=Phase.parse(reply.get("phase")),
            model_uuid=model_uuid,
        )

    def close(self) -> None:
        self.conn.close()


def open_controller_api(
    endpoint: ControllerEndpoint,
    account: AccountDetails,
    *,
    macaroons: Iterable[Iterable[Macaroon]] = (),
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    connect: Callable[..., Any] = websocket.create_connection,
) -> ControllerClient:
    conn = RpcConnection(
        endpoint.api_endpoints,
        ca_cert=endpoint.ca_cert,
        timeout=timeout,
        connect=connect,
    )
    try:
        conn.login(user_tag(account.user), account.password, macaroons=macaroons)
    except (InvalidTagError, RpcError, TransportError):
        conn.close()
        raise
    return ControllerClient(conn)


def open_migration_master(
    identity: MachineIdentity,
    endpoint: ControllerEndpoint,
    model_uuid: str,
    *,
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    connect: Callable[..., Any] = websocket.create_connection,
) -> MigrationMasterClient:
    conn = RpcConnection(
        endpoint.api_endpoints,
        ca_cert=endpoint.ca_cert,
        model_uuid=model_uuid,
        timeout=timeout,
        connect=connect,
    )
    try:
        conn.login(str(identity.tag), identity.password, nonce=identity.nonce)
    except (RpcError, TransportError):
        conn.close()
        raise
    return MigrationMasterClient(conn)
