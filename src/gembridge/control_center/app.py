import os
from typing import Any, Dict, List, Optional, Set, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from gembridge.services.error_codes import (
    ERROR_CATALOG,
    SPAWN_FAILED_MESSAGE,
    detect_error_code,
    error_code_for_exit,
    get_catalog_entry,
)
from gembridge.services.toolchain import ToolchainGateway


class RequireGemRequest(BaseModel):
    name: str
    version: str = ""
    force_refresh: bool = False


class RunGemCommandRequest(BaseModel):
    packages: Union[str, Dict[str, str]]
    command: str
    args: List[str] = Field(default_factory=list)


READ_SCOPE = "api:read"
INSTALL_SCOPE = "gems:install"
RUN_SCOPE = "gems:run"


def _parse_local_api_keys(raw: str) -> Dict[str, Set[str]]:
    """``token:scope1,scope2;token2:scope`` into a token -> scopes map."""
    out: Dict[str, Set[str]] = {}
    for chunk in (raw or "").split(";"):
        value = chunk.strip()
        if not value:
            continue
        parts = value.split(":", 1)
        if len(parts) != 2:
            continue
        token = parts[0].strip()
        if not token:
            continue
        scopes = {s.strip().lower() for s in parts[1].split(",") if s.strip()}
        out[token] = scopes or {READ_SCOPE}
    return out


def _catalog_to_dict() -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for entry in ERROR_CATALOG:
        out.append(
            {
                "code": entry.code,
                "title": entry.title,
                "user_message": entry.user_message,
                "actions": [
                    {"action_id": a.action_id, "label": a.label, "description": a.description}
                    for a in entry.actions
                ],
            }
        )
    return out


def _error_payload(error: Optional[str]) -> Dict[str, Any]:
    if not error:
        return {"ok": True, "error": "", "error_code": "", "error_title": ""}
    code = detect_error_code(error)
    return {
        "ok": False,
        "error": error,
        "error_code": code,
        "error_title": get_catalog_entry(code).title,
    }


def _run_payload(exit_code: int, out: bytearray, err: bytearray) -> Dict[str, Any]:
    code = error_code_for_exit(exit_code)
    return {
        "ok": exit_code == 0,
        "exit_code": exit_code,
        "stdout": bytes(out).decode("utf-8", errors="replace"),
        "stderr": bytes(err).decode("utf-8", errors="replace"),
        "error": SPAWN_FAILED_MESSAGE if code else "",
        "error_code": code,
    }


def create_app(
    gateway: Optional[ToolchainGateway] = None,
    api_keys: Optional[Dict[str, Set[str]]] = None,
) -> FastAPI:
    gateway = gateway or ToolchainGateway()
    app = FastAPI(title="gembridge", version="0.1.0")
    if api_keys is None:
        api_keys = _parse_local_api_keys(os.environ.get("LOCAL_API_KEYS", ""))
    auth_enabled = bool(api_keys)

    def _resolve_api_token(request: Request) -> str:
        bearer = (request.headers.get("authorization") or "").strip()
        if bearer.lower().startswith("bearer "):
            return bearer[7:].strip()
        return (request.headers.get("x-local-api-key") or "").strip()

    def _opt_api_scope(request: Request, required_scope: str = READ_SCOPE) -> None:
        """Enforce a token scope on /api/* when LOCAL_API_KEYS is configured.

        Without configured keys every route stays open for local use.
        """
        if not auth_enabled:
            return
        token = _resolve_api_token(request)
        if not token:
            raise HTTPException(status_code=401, detail="Missing API token.")
        scopes = api_keys.get(token)
        if not scopes:
            raise HTTPException(status_code=401, detail="Invalid API token.")
        if "admin:*" in scopes or required_scope in scopes:
            return
        raise HTTPException(status_code=403, detail=f"Missing scope: {required_scope}")

    def _scoped(request: Request) -> ToolchainGateway:
        return gateway.for_request(flush=request.query_params.get("flush"))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        toolchain = await run_in_threadpool(gateway.status)
        return {"status": "ok", "toolchain": toolchain}

    @app.get("/api/toolchain")
    async def api_toolchain(request: Request) -> Dict[str, Any]:
        _opt_api_scope(request)
        return await run_in_threadpool(gateway.status)

    @app.get("/api/error-catalog")
    async def api_error_catalog(request: Request) -> List[Dict[str, Any]]:
        _opt_api_scope(request)
        return _catalog_to_dict()

    @app.post("/api/gems/require")
    async def api_require_gem(body: RequireGemRequest, request: Request) -> Dict[str, Any]:
        _opt_api_scope(request, INSTALL_SCOPE)
        error = await run_in_threadpool(
            _scoped(request).ensure_package_installed,
            body.name,
            body.version or None,
            body.force_refresh,
        )
        return _error_payload(error)

    @app.post("/api/gems/run")
    async def api_run_gem_command(body: RunGemCommandRequest, request: Request) -> Dict[str, Any]:
        _opt_api_scope(request, RUN_SCOPE)
        out, err = bytearray(), bytearray()
        exit_code = await run_in_threadpool(
            _scoped(request).invoke_package_command,
            body.packages,
            body.command,
            body.args,
            out,
            err,
        )
        return _run_payload(exit_code, out, err)

    return app
