from __future__ import annotations

"""HTTP API surface for players and the admin console."""

from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .client import riddle_board
from .errors import (
    AuthorizationError,
    ConcurrencyConflict,
    HuntError,
    SectionLockedError,
    StoreWriteError,
    UnknownRequestError,
    UnknownTeamError,
    ValidationError,
)
from .gate import GATE_OPEN, check_section, section_overview
from .indexing import SECTIONS
from .models import VALID_STATUSES, GameConfig, TeamProfile
from .service import HuntService
from .telemetry import sanitize_actor_id


ADMIN_PIN_HEADER = "x-hth-admin-pin"
TRACE_HEADER = "X-HTH-Trace-Id"

ERROR_STATUS: list[tuple[type[HuntError], int]] = [
    (ValidationError, 400),
    (AuthorizationError, 401),
    (SectionLockedError, 403),
    (UnknownRequestError, 404),
    (UnknownTeamError, 404),
    (ConcurrencyConflict, 409),
    (StoreWriteError, 503),
]


def status_for(exc: HuntError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    pin: str
    confirm_pin: str


class LoginRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    pin: str


class ForgotPasswordRequest(BaseModel):
    """First call without `confirm` to learn whether the warning is still available."""

    name: str = Field(min_length=1, max_length=80)
    confirm: bool = False


class SubmissionRequest(BaseModel):
    team: str = Field(min_length=1, max_length=80)
    pin: str
    section: int
    local_index: int = Field(ge=0)
    answer: str = Field(max_length=500)


class PointingRequest(BaseModel):
    team: str = Field(min_length=1, max_length=80)
    pin: str
    subject_id: str = Field(min_length=1, max_length=80)


class AdminLoginRequest(BaseModel):
    pin: str


class DecisionRequest(BaseModel):
    decision: str = Field(pattern=r"^(approve|reject)$")


class ConfigUpdateRequest(BaseModel):
    sections_1_2_unlocked: bool | None = None
    section_3_unlocked: bool | None = None


def create_app(service: HuntService) -> FastAPI:
    """Create API routes backed by `HuntService`."""

    app = FastAPI(title="Hunting the Heavens API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get("x-hth-trace-id") or "").strip()
        trace_id = sanitize_actor_id(incoming) if incoming else f"api:{uuid4()}"
        if not trace_id or trace_id == "unknown":
            trace_id = f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                actor="system",
                actor_id="api:unknown",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "trace_id": trace_id,
                },
            )
        response.headers[TRACE_HEADER] = trace_id
        return response

    @app.exception_handler(HuntError)
    async def hunt_error_handler(request: Request, exc: HuntError) -> JSONResponse:
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    def require_admin(request: Request) -> TeamProfile:
        pin = (request.headers.get(ADMIN_PIN_HEADER) or "").strip()
        if not pin:
            raise AuthorizationError("Admin PIN header required.", hint="Send X-HTH-Admin-Pin.")
        return service.verify_admin(pin, source="api")

    def load_team(name: str) -> TeamProfile:
        record = service.store.get_team(name)
        if record is None:
            raise UnknownTeamError(f"Team not found: {name}", team=name)
        return TeamProfile.from_record(record)

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "version": "0.1", "catalog_id": service.catalog.catalog_id}

    @app.post("/v1/teams/register")
    def register(request: RegisterRequest) -> dict[str, Any]:
        profile = service.accounts.register(request.name, request.pin, request.confirm_pin, source="api")
        return {"team": profile.to_record(), "message": "Profile Established. Log In to proceed."}

    @app.post("/v1/teams/login")
    def login(request: LoginRequest) -> dict[str, Any]:
        client = service.team_client(request.name, request.pin, source="api")
        client.close()
        return {
            "team": client.profile.to_snapshot(),
            "screen": client.state.screen,
            "config": client.state.config.to_record(),
        }

    @app.post("/v1/teams/forgot-password")
    def forgot_password(request: ForgotPasswordRequest) -> dict[str, Any]:
        return service.accounts.forgot_password(request.name, confirm=request.confirm, source="api").to_dict()

    @app.get("/v1/teams/{name}/sections")
    def team_sections(name: str) -> list[dict[str, object]]:
        return section_overview(load_team(name), service.config(), service.catalog)

    @app.get("/v1/sections/{section}/riddles")
    def section_riddles(section: int, team: str | None = Query(default=None, max_length=80)) -> dict[str, Any]:
        if section not in SECTIONS:
            raise SectionLockedError("Horizon Connection Pending.", section=section)
        profile = load_team(team) if team else None
        config = service.config()
        if profile is not None:
            gate_open = check_section(section, profile, config, service.catalog) == GATE_OPEN
        else:
            gate_open = section != 3 or config.section_3_unlocked
        if not gate_open:
            raise SectionLockedError("This path remains veiled.", section=section)
        return {
            "section": section,
            "title": service.catalog.section_titles.get(section, f"Section {section}"),
            "guidelines": service.catalog.guidelines.get(section, []),
            "riddles": riddle_board(service.catalog, section, profile),
        }

    @app.post("/v1/submissions")
    def submit(request: SubmissionRequest) -> dict[str, Any]:
        client = service.team_client(request.team, request.pin, source="api")
        try:
            result = client.submit_answer(request.section, request.local_index, request.answer)
        finally:
            client.close()
        return {
            "outcome": result.outcome,
            "effects": sorted(result.effects),
            "verification": result.verification_entry.to_record() if result.verification_entry else None,
            "status": client.status(),
            "notices": [notice.to_dict() for notice in client.drain_notices()],
        }

    @app.post("/v1/pointing")
    def pointing(request: PointingRequest) -> dict[str, Any]:
        client = service.team_client(request.team, request.pin, source="api")
        try:
            entry = client.request_pointing(request.subject_id)
        finally:
            client.close()
        return {
            "request": entry.to_record(),
            "status": client.status(),
            "notices": [notice.to_dict() for notice in client.drain_notices()],
        }

    @app.post("/v1/admin/login")
    def admin_login(request: AdminLoginRequest) -> dict[str, Any]:
        profile = service.verify_admin(request.pin, source="api")
        return {"team": profile.to_record(), "screen": "ADMIN"}

    @app.get("/v1/admin/requests")
    def admin_requests(http_request: Request, status: str | None = None) -> dict[str, Any]:
        require_admin(http_request)
        if status is not None and status not in VALID_STATUSES:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        queue = service.queue()
        return {
            "requests": service.store.list_requests(status=status),
            "stats": queue.stats(),
        }

    @app.post("/v1/admin/requests/{request_id}/decision")
    def decide(request_id: str, request: DecisionRequest, http_request: Request) -> dict[str, Any]:
        require_admin(http_request)
        return service.reconciler().decide(request_id, request.decision, actor_id="Admin", source="api").to_dict()

    @app.get("/v1/config")
    def get_config() -> dict[str, Any]:
        return service.config().to_record()

    @app.put("/v1/admin/config")
    def put_config(request: ConfigUpdateRequest, http_request: Request) -> dict[str, Any]:
        require_admin(http_request)
        fields = {key: value for key, value in request.model_dump().items() if value is not None}
        if not fields:
            raise HTTPException(status_code=400, detail="No config fields supplied.")
        config = GameConfig.from_record(service.store.update_config(fields))
        service.telemetry.log_event(
            "config.updated",
            actor="admin",
            actor_id="Admin",
            source="api",
            trace_id=getattr(http_request.state, "trace_id", None),
            data=fields,
        )
        return config.to_record()

    @app.get("/v1/leaderboard")
    def leaderboard() -> list[dict[str, Any]]:
        return service.leaderboard()

    return app
