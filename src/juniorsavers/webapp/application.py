"""FastAPI frontend for Junior Savers.

The web application exposes the sync engine and the guardian PIN gate as a
small JSON API. Every browser session gets its own :class:`JuniorSavers`
instance; all instances share one document store, so a curriculum published
by one guardian reaches every connected learner through its subscription.
Instances left idle, or beyond the configured limit, are stopped and
forgotten by :class:`ActiveSessions`.
Serve it with ``uvicorn juniorsavers.webapp:app``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from ..context import SyncContext
from ..exceptions import (
    GateError,
    MalformedDocumentError,
    PermissionDeniedError,
    ProfileNotLoadedError,
    SessionAbsentError,
    StoreUnavailableError,
)
from ..ops import StructuredLogger
from ..security import SessionProvider
from ..service import JuniorSavers
from ..store import DocumentStore
from ..timers import AsyncioScheduler, Scheduler
from .config import APP_ID, LOG_PATH, SESSION_COOKIE_KEY, SESSION_SECRET
from .persistence import SQLDocumentStore
from .sessions import ActiveSessions

SESSION_KEY = "sid"


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status_code)


def state_payload(instance: JuniorSavers) -> Dict[str, Any]:
    """Everything the presentation layer needs to draw the current screen."""

    engine = instance.engine
    gate = instance.gate
    profile = instance.profile
    return {
        "session_id": engine.session_id,
        "view": instance.view.value,
        "gate": {
            "state": gate.state.value,
            "mode": gate.mode.value if gate.mode else None,
            "entered": gate.entered,
        },
        "profile": {
            "balance": profile.balance,
            "xp": profile.xp,
            "completed_lessons": list(profile.completed_lessons),
            "guardian_contact": profile.guardian_contact,
            "grade_level": profile.grade_level,
            "onboarded": profile.is_onboarded,
        },
        "dashboard": instance.dashboard(),
        "unpublished_grades": sorted(engine.unpublished_grades),
        "last_error": str(engine.last_error) if engine.last_error else None,
    }


def create_app(
    store: Optional[DocumentStore] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    logger: Optional[StructuredLogger] = None,
    namespace: Optional[str] = APP_ID,
    sessions: Optional[ActiveSessions] = None,
) -> FastAPI:
    structured_logger = logger or StructuredLogger(path=LOG_PATH)
    document_store = store if store is not None else SQLDocumentStore(logger=structured_logger)
    timer_scheduler = scheduler or AsyncioScheduler()
    instances = sessions if sessions is not None else ActiveSessions(logger=structured_logger)

    app = FastAPI(title="Junior Savers")
    app.add_middleware(
        SessionMiddleware,
        secret_key=SESSION_SECRET,
        session_cookie=SESSION_COOKIE_KEY,
        same_site="lax",
        max_age=None,
    )
    app.state.sessions = instances
    app.state.store = document_store

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(_: Request, exc: StoreUnavailableError) -> JSONResponse:
        return _error(503, exc)

    @app.exception_handler(PermissionDeniedError)
    async def store_denied(_: Request, exc: PermissionDeniedError) -> JSONResponse:
        return _error(403, exc)

    @app.exception_handler(MalformedDocumentError)
    async def malformed(_: Request, exc: MalformedDocumentError) -> JSONResponse:
        return _error(502, exc)

    @app.exception_handler(GateError)
    async def gate_error(_: Request, exc: GateError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(SessionAbsentError)
    async def session_absent(_: Request, exc: SessionAbsentError) -> JSONResponse:
        return _error(409, exc)

    @app.exception_handler(ProfileNotLoadedError)
    async def profile_not_loaded(_: Request, exc: ProfileNotLoadedError) -> JSONResponse:
        return _error(409, exc)

    def current(request: Request) -> JuniorSavers:
        session_id = request.session.get(SESSION_KEY)
        instance = instances.get(session_id) if session_id else None
        if instance is None:
            raise HTTPException(status_code=401, detail="Start a session first.")
        return instance

    def respond(instance: JuniorSavers, **extra: Any) -> JSONResponse:
        payload = state_payload(instance)
        payload.update(extra)
        return JSONResponse(payload)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    @app.post("/session")
    async def start_session(request: Request) -> JSONResponse:
        remembered = request.session.get(SESSION_KEY)
        instance = instances.get(remembered) if remembered else None
        if instance is None:
            context = SyncContext(
                store=document_store,
                scheduler=timer_scheduler,
                logger=structured_logger,
                namespace=namespace,
            )
            instance = JuniorSavers(context, sessions=SessionProvider(session_id=remembered))
            session_id = instance.start()
            instances.add(session_id, instance)
            request.session[SESSION_KEY] = session_id
        return respond(instance)

    @app.get("/state")
    async def get_state(request: Request) -> JSONResponse:
        return respond(current(request))

    @app.get("/curriculum/{grade}")
    async def get_grade(request: Request, grade: int) -> JSONResponse:
        instance = current(request)
        modules = instance.engine.modules_for(grade)
        if not modules:
            raise HTTPException(status_code=404, detail=f"Grade {grade} has no modules.")
        return JSONResponse({"grade": grade, "modules": [module.to_document() for module in modules]})

    # ------------------------------------------------------------------
    # Onboarding and PIN pad
    # ------------------------------------------------------------------
    @app.post("/onboarding")
    async def onboarding(request: Request, grade: int = Form(...), contact: str = Form("")) -> JSONResponse:
        instance = current(request)
        try:
            instance.begin_onboarding(grade, contact)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return respond(instance)

    @app.post("/pin/digit")
    async def pin_digit(request: Request, digit: str = Form(...)) -> JSONResponse:
        instance = current(request)
        try:
            accepted = instance.gate.press(digit)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return respond(instance, accepted=accepted)

    @app.post("/pin/backspace")
    async def pin_backspace(request: Request) -> JSONResponse:
        instance = current(request)
        return respond(instance, accepted=instance.gate.backspace())

    @app.post("/pin/cancel")
    async def pin_cancel(request: Request) -> JSONResponse:
        instance = current(request)
        return respond(instance, cancelled=instance.gate.cancel())

    # ------------------------------------------------------------------
    # Learner
    # ------------------------------------------------------------------
    @app.post("/lessons/{lesson_id}/complete")
    async def complete_lesson(request: Request, lesson_id: str) -> JSONResponse:
        instance = current(request)
        try:
            credited = instance.complete_lesson(lesson_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown lesson '{lesson_id}'.") from exc
        return respond(instance, credited=credited)

    # ------------------------------------------------------------------
    # Guardian
    # ------------------------------------------------------------------
    @app.post("/admin/request")
    async def admin_request(request: Request) -> JSONResponse:
        instance = current(request)
        instance.request_admin()
        return respond(instance)

    @app.post("/admin/curriculum/{grade}/{week_index}")
    async def admin_edit(
        request: Request,
        grade: int,
        week_index: int,
        title: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
        reward_points: Optional[int] = Form(None),
    ) -> JSONResponse:
        instance = current(request)
        fields: Dict[str, Any] = {}
        if title is not None:
            fields["title"] = title
        if description is not None:
            fields["description"] = description
        if reward_points is not None:
            fields["reward_points"] = reward_points
        try:
            module = instance.edit_module(grade, week_index, **fields)
        except PermissionError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        except (KeyError, IndexError) as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return respond(instance, module=module.to_document())

    @app.post("/admin/publish")
    async def admin_publish(request: Request) -> JSONResponse:
        instance = current(request)
        try:
            published = instance.publish_curriculum()
        except PermissionError as exc:
            raise HTTPException(status_code=403, detail=str(exc)) from exc
        return respond(instance, published=published)

    @app.post("/admin/close")
    async def admin_close(request: Request) -> JSONResponse:
        instance = current(request)
        instance.close_admin()
        return respond(instance)

    return app


_default_app: Optional[FastAPI] = None


def __getattr__(name: str) -> Any:
    # The default app opens the SQLite file, so it is only built on first use.
    global _default_app
    if name == "app":
        if _default_app is None:
            _default_app = create_app()
        return _default_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["create_app", "state_payload"]
