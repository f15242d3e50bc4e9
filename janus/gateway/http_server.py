"""JSON-RPC 2.0 endpoint exposing the orchestrator over HTTP.

Routes:
  POST /        - JSON-RPC call (forward, mock, submit_proof,
                  verify_aggr_proof, verify_solidity)
  GET  /health  - liveness + outcome counters
  *    /        - any other verb is answered with 405
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

import bittensor as bt
from aiohttp import web

from janus.oracle.errors import (
    DecodingError,
    JanusError,
    LedgerInconsistency,
    LockTimeout,
    ShapeMismatch,
    StageExecutionError,
)
from janus.oracle.orchestrator import VerificationOrchestrator

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
LOCK_TIMEOUT = -32001
LEDGER_INCONSISTENCY = -32002
STAGE_ERROR = -32003

# (rpc code, http status) per oracle error
_ERROR_MAP: list[tuple[type[Exception], int, int]] = [
    (ShapeMismatch, INVALID_PARAMS, 400),
    (DecodingError, INVALID_PARAMS, 400),
    (LockTimeout, LOCK_TIMEOUT, 409),
    (LedgerInconsistency, LEDGER_INCONSISTENCY, 409),
    (StageExecutionError, STAGE_ERROR, 502),
]

_CLAIM_PARAMS = ("input_data", "target_output_data", "user_address")


class _RpcFault(Exception):
    def __init__(self, code: int, message: str, status: int = 400, data: Any = None):
        self.code = code
        self.message = message
        self.status = status
        self.data = data
        super().__init__(message)


def _error_body(req_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "error": error, "id": req_id}


def _bind(params: Any, names: tuple[str, ...], required: int) -> dict[str, Any]:
    """Bind positional or named JSON-RPC params to argument names."""
    if params is None:
        params = []
    if isinstance(params, list):
        if len(params) > len(names):
            raise _RpcFault(INVALID_PARAMS, f"expected at most {len(names)} params, got {len(params)}")
        bound = dict(zip(names, params))
    elif isinstance(params, dict):
        unknown = set(params) - set(names)
        if unknown:
            raise _RpcFault(INVALID_PARAMS, f"unknown params: {sorted(unknown)}")
        bound = dict(params)
    else:
        raise _RpcFault(INVALID_PARAMS, "params must be an array or an object")
    missing = [n for n in names[:required] if n not in bound]
    if missing:
        raise _RpcFault(INVALID_PARAMS, f"missing params: {missing}")
    return bound


class JanusRPCServer:
    """Lightweight async HTTP server for the oracle's RPC methods."""

    def __init__(
        self,
        orchestrator: VerificationOrchestrator,
        host: str = "127.0.0.1",
        port: int = 8000,
    ):
        self.orchestrator = orchestrator
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._methods: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "forward": self._forward,
            "mock": self._mock,
            "submit_proof": self._submit_proof,
            "verify_aggr_proof": self._verify_aggr_proof,
            "verify_solidity": self._verify_solidity,
        }

    @property
    def methods(self) -> list[str]:
        return list(self._methods.keys())

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/", self._handle_rpc)
        app.router.add_route("*", "/", self._handle_not_allowed)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        bt.logging.info({"janus_rpc": {"status": "started", "host": self.host, "port": self.port}})

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            bt.logging.info({"janus_rpc": "stopped"})

    # -- Routes --

    async def _handle_not_allowed(self, request: web.Request) -> web.Response:
        bt.logging.debug({"janus_rpc": {"status": 405, "verb": request.method}})
        return web.Response(status=405, text="Method Not Allowed")

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "methods": self.methods,
            "outcomes": dict(self.orchestrator.outcomes),
        })

    async def _handle_rpc(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            bt.logging.warning({"janus_rpc": {"status": 400, "error": "parse_error"}})
            return web.json_response(_error_body(None, PARSE_ERROR, "Parse error"), status=400)

        if not isinstance(body, dict) or body.get("jsonrpc") != "2.0" or not isinstance(body.get("method"), str):
            req_id = body.get("id") if isinstance(body, dict) else None
            return web.json_response(_error_body(req_id, INVALID_REQUEST, "Invalid Request"), status=400)

        req_id = body.get("id")
        method = body["method"]
        handler = self._methods.get(method)
        if handler is None:
            bt.logging.info({"janus_rpc": {"method": method, "status": 404}})
            return web.json_response(_error_body(req_id, METHOD_NOT_FOUND, "Method not found"), status=404)

        try:
            result = await handler(body.get("params"))
        except _RpcFault as e:
            bt.logging.info({"janus_rpc": {"method": method, "status": e.status, "error": e.message}})
            return web.json_response(_error_body(req_id, e.code, e.message, e.data), status=e.status)
        except JanusError as e:
            code, status = self._classify(e)
            bt.logging.warning({"janus_rpc": {"method": method, "status": status, "error": e.code, "detail": str(e)}})
            return web.json_response(
                _error_body(req_id, code, str(e), {"type": e.code, "retryable": e.retryable}),
                status=status,
            )
        except Exception as e:
            bt.logging.error({"janus_rpc": {"method": method, "status": 500, "error": repr(e)}})
            return web.json_response(_error_body(req_id, INTERNAL_ERROR, "Internal error"), status=500)

        bt.logging.info({"janus_rpc": {"method": method, "status": 200}})
        return web.json_response({"jsonrpc": "2.0", "result": result, "id": req_id})

    @staticmethod
    def _classify(error: JanusError) -> tuple[int, int]:
        for exc_type, code, status in _ERROR_MAP:
            if isinstance(error, exc_type):
                return code, status
        return INTERNAL_ERROR, 500

    # -- Methods --

    async def _forward(self, params: Any) -> Any:
        args = _bind(params, ("input_data", "user_address"), required=1)
        identity = args.get("user_address") or "anonymous"
        return await self.orchestrator.forward(identity, args["input_data"])

    async def _mock(self, params: Any) -> bool:
        args = _bind(params, _CLAIM_PARAMS, required=3)
        verdict = await self.orchestrator.evaluate_mock(
            args["user_address"], args["input_data"], args["target_output_data"],
        )
        return bool(verdict)

    async def _submit_proof(self, params: Any) -> bool:
        args = _bind(params, _CLAIM_PARAMS, required=3)
        verdict = await self.orchestrator.submit_proof(
            args["user_address"], args["input_data"], args["target_output_data"],
        )
        return bool(verdict)

    async def _verify_aggr_proof(self, params: Any) -> bool:
        args = _bind(params, _CLAIM_PARAMS, required=3)
        verdict = await self.orchestrator.verify_aggregate(
            args["user_address"], args["input_data"], args["target_output_data"],
        )
        return bool(verdict)

    async def _verify_solidity(self, params: Any) -> bool:
        args = _bind(params, _CLAIM_PARAMS, required=3)
        verdict = await self.orchestrator.verify_on_chain(
            args["user_address"], args["input_data"], args["target_output_data"],
        )
        return bool(verdict)


__all__ = ["JanusRPCServer"]
