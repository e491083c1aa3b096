"""Main application entry point for the desk reservation service.

This module defines the FastAPI application, configures logging, wires the
store, the identity provider and the session registry together, and
serves a JSON API plus a WebSocket for live updates.

Endpoints:
  - ``/api/auth/*``: local sign-up, sign-in and sign-out.
  - ``/api/layout/*``: browse buildings, floors and desks.
  - ``/api/availability``: one-shot desk availability for a scope.
  - ``/api/bookings``: create (optionally recurring), cancel and list bookings.
  - ``/api/dashboard``: the caller's usage summary.
  - ``/api/admin/*``: layout editing, aggregate dashboard, upcoming bookings.
  - ``/ws``: live availability and own-booking updates.
  - ``/healthz``: simple health check endpoint.

Every service error is a ``DeskbookError``; a single exception handler
turns it into a JSON error body with the matching status code, so a failed
request never leaves partial state behind in the session.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .availability import compute_view, filter_view
from .bookings import BookingRecordStore, scope_query, upcoming_query, user_query
from .config import Settings, settings
from .dashboard import admin_dashboard, chronological, describe, user_dashboard
from .errors import AuthError, DeskbookError, Forbidden, StoreError
from .guard import BookingGuard
from .identity import LocalIdentityProvider, verify_firebase_token
from .intervals import time_options
from .layout import LayoutRepository, NodeRef
from .models import (
    AvailabilityView,
    Booking,
    BookingRequest,
    Credentials,
    DeskState,
    DeskTagsRequest,
    DesksRequest,
    NameRequest,
    NodeRefModel,
    RenameRequest,
    Scope,
    SessionToken,
    UserHandle,
)
from .recurrence import submit_recurring
from .session import Session, SessionRegistry
from .store import DocumentStore, MemoryDocumentStore, Subscription

logger = logging.getLogger("deskbook")
logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _now() -> dt.datetime:
    """Wall-clock time of the office; bookings are expressed in local time."""
    return dt.datetime.now()


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _build_store(config: Settings) -> DocumentStore:
    if config.store_backend == "firestore":
        from .firestore_store import FirestoreDocumentStore

        return FirestoreDocumentStore(config.app_id, project=config.firestore_project)
    return MemoryDocumentStore(config.app_id)


def create_app(
    config: Settings = settings,
    documents: Optional[DocumentStore] = None,
    identity: Optional[LocalIdentityProvider] = None,
) -> FastAPI:
    """Build the application around ``documents`` (default: from ``config``)."""
    documents = documents if documents is not None else _build_store(config)
    identity = identity or LocalIdentityProvider(config.allow_signup, config.min_password_length)
    if config.seed_demo_users:
        identity.seed_demo_users()

    bookings = BookingRecordStore(documents)
    layouts = LayoutRepository(documents)
    registry = SessionRegistry(bookings, layouts, config.admin_email)
    unsubscribe_auth = identity.on_auth_state_change(registry.on_auth_state)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Desk booking service starting (store=%s, policy=%s, auth=%s, app_id=%s)",
            config.store_backend,
            config.booking_policy,
            config.auth_mode,
            config.app_id,
        )
        yield
        registry.close_all()
        unsubscribe_auth()

    app = FastAPI(title="Desk Booking Service", lifespan=lifespan)
    app.state.settings = config
    app.state.documents = documents
    app.state.identity = identity
    app.state.bookings = bookings
    app.state.layouts = layouts
    app.state.registry = registry
    app.state.guard = BookingGuard(bookings, config.booking_policy)

    # CORS configuration: disabled by default because the client and API are served
    # from the same origin. Set ENABLE_CORS=yes to expose the API to other hosts.
    if config.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(DeskbookError)
    async def _service_error(request: Request, exc: DeskbookError) -> JSONResponse:
        if isinstance(exc, StoreError):
            logger.error("Store error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        body: Dict[str, Any] = {"error": type(exc).__name__, "detail": exc.user_message()}
        if isinstance(exc, AuthError):
            body["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=body)

    _register_routes(app)
    return app


# ---------- dependencies ----------
async def _resolve_session(app: FastAPI, token: str) -> Session:
    if not token:
        raise AuthError(AuthError.INVALID_CREDENTIALS, "Not signed in.")
    registry: SessionRegistry = app.state.registry
    config: Settings = app.state.settings
    if config.auth_mode == "firebase":
        user = await asyncio.to_thread(verify_firebase_token, token, config.firebase_project_id)
        key = f"firebase:{user.uid}"
        return registry.get(key) or await registry.open(user, token=key)
    session = registry.get(token)
    if session is None:
        raise AuthError(AuthError.INVALID_CREDENTIALS, "Not signed in.")
    return session


async def current_session(request: Request, authorization: str = Header(default="")) -> Session:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        token = ""
    return await _resolve_session(request.app, token.strip())


async def admin_session(session: Session = Depends(current_session)) -> Session:
    if not session.is_admin:
        raise Forbidden("admin privileges required")
    return session


def _ref(model: NodeRefModel) -> NodeRef:
    return NodeRef(model.building_id, model.floor_id, model.desk_id)


def _booking_list(bookings: List[Booking], session: Session) -> List[Dict[str, Any]]:
    return [_dump(describe(b, session.layout)) for b in chronological(bookings)]


def _register_routes(app: FastAPI) -> None:
    state = app.state

    # ---------- auth ----------
    def _local_identity() -> LocalIdentityProvider:
        if state.settings.auth_mode != "local":
            raise AuthError(AuthError.OPERATION_NOT_ALLOWED, "Sign in with Firebase in this deployment.")
        return state.identity

    async def _start(user: UserHandle) -> Dict[str, Any]:
        session = await state.registry.open(user)
        return _dump(SessionToken(token=session.token, uid=user.uid, email=user.email, is_admin=session.is_admin))

    @app.post("/api/auth/signup", status_code=201)
    async def sign_up(credentials: Credentials) -> Dict[str, Any]:
        """Create an account and sign it in."""
        user = _local_identity().sign_up(credentials.email, credentials.password)
        return await _start(user)

    @app.post("/api/auth/signin")
    async def sign_in(credentials: Credentials) -> Dict[str, Any]:
        user = _local_identity().sign_in(credentials.email, credentials.password)
        return await _start(user)

    @app.post("/api/auth/signout")
    async def sign_out(session: Session = Depends(current_session)) -> Dict[str, Any]:
        """End the caller's session and release its live subscriptions."""
        if state.settings.auth_mode == "local":
            state.identity.sign_out(session.user.uid)
        state.registry.close(session.token)
        return {"ok": True}

    # ---------- layout ----------
    @app.get("/api/time-options")
    def api_time_options() -> Dict[str, Any]:
        config: Settings = state.settings
        return {"items": time_options(config.slot_start, config.slot_end, config.slot_minutes)}

    @app.get("/api/layout/buildings")
    async def api_buildings(session: Session = Depends(current_session)) -> Dict[str, Any]:
        return {"items": [_dump(b) for b in session.layout.list_buildings()]}

    @app.get("/api/layout/buildings/{building_id}/floors")
    async def api_floors(building_id: str, session: Session = Depends(current_session)) -> Dict[str, Any]:
        return {"items": [_dump(f) for f in session.layout.list_floors(building_id)]}

    @app.get("/api/layout/buildings/{building_id}/floors/{floor_id}/desks")
    async def api_desks(building_id: str, floor_id: str, session: Session = Depends(current_session)) -> Dict[str, Any]:
        return {"items": [d.model_dump() for d in session.layout.list_desks(building_id, floor_id)]}

    # ---------- availability & bookings ----------
    @app.get("/api/availability")
    async def api_availability(
        date: dt.date,
        building_id: str = Query(..., alias="buildingId"),
        floor_id: str = Query(..., alias="floorId"),
        start: Optional[dt.time] = None,
        end: Optional[dt.time] = None,
        tag: Optional[str] = None,
        desk_state: Optional[DeskState] = Query(None, alias="state"),
        search: Optional[str] = None,
        session: Session = Depends(current_session),
    ) -> Dict[str, Any]:
        """Compute desk states once for a scope. Use ``/ws`` to follow changes."""
        scope = Scope(date=date, building_id=building_id, floor_id=floor_id, start=start, end=end)
        desks = session.layout.list_desks(building_id, floor_id)
        if scope.interval is None:
            view = compute_view(scope, desks, None)
        else:
            view = compute_view(scope, desks, await state.bookings.list(scope_query(date, building_id, floor_id)))
        return _dump(filter_view(view, tag=tag, state=desk_state, search=search))

    @app.post("/api/bookings", status_code=201)
    async def api_book(request: BookingRequest, session: Session = Depends(current_session)) -> Dict[str, Any]:
        """Book a desk, or a series of dates when ``recurrence`` is given."""
        if request.recurrence is not None:
            outcome = await submit_recurring(
                state.guard,
                request,
                session.user,
                request.recurrence.end_date,
                request.recurrence.frequency,
                layout=session.layout,
            )
            return _dump(outcome)
        booking_id = await state.guard.submit(request, session.user, layout=session.layout)
        return {"id": booking_id}

    @app.delete("/api/bookings/{booking_id}")
    async def api_cancel(booking_id: str, session: Session = Depends(current_session)) -> Dict[str, Any]:
        await state.guard.cancel(booking_id, session.user, is_admin=session.is_admin)
        return {"ok": True, "id": booking_id}

    @app.get("/api/bookings/mine")
    async def api_my_bookings(session: Session = Depends(current_session)) -> Dict[str, Any]:
        bookings = await state.bookings.list(user_query(session.user.uid))
        return {"items": _booking_list(bookings, session)}

    @app.get("/api/dashboard")
    async def api_dashboard(session: Session = Depends(current_session)) -> Dict[str, Any]:
        bookings = await state.bookings.list(user_query(session.user.uid))
        return _dump(user_dashboard(bookings, session.layout, _now().date()))

    # ---------- admin ----------
    @app.get("/api/admin/layout")
    async def admin_layout(session: Session = Depends(admin_session)) -> Dict[str, Any]:
        return {"structure": session.layout.to_structure(), "dirty": session.layout.dirty}

    @app.post("/api/admin/buildings", status_code=201)
    async def admin_add_building(body: NameRequest, session: Session = Depends(admin_session)) -> Dict[str, Any]:
        return {"id": session.layout.add_building(body.name)}

    @app.post("/api/admin/buildings/{building_id}/floors", status_code=201)
    async def admin_add_floor(
        building_id: str, body: NameRequest, session: Session = Depends(admin_session)
    ) -> Dict[str, Any]:
        return {"id": session.layout.add_floor(building_id, body.name)}

    @app.post("/api/admin/buildings/{building_id}/floors/{floor_id}/desks", status_code=201)
    async def admin_add_desks(
        building_id: str, floor_id: str, body: DesksRequest, session: Session = Depends(admin_session)
    ) -> Dict[str, Any]:
        ids = session.layout.add_desks(building_id, floor_id, body.prefix, body.count, body.start_index, body.tags)
        return {"ids": ids}

    @app.patch("/api/admin/nodes")
    async def admin_rename(body: RenameRequest, session: Session = Depends(admin_session)) -> Dict[str, Any]:
        session.layout.rename(_ref(body), body.new_name)
        return {"ok": True, "dirty": session.layout.dirty}

    @app.delete("/api/admin/nodes")
    async def admin_remove(
        building_id: str = Query(..., alias="buildingId"),
        floor_id: Optional[str] = Query(None, alias="floorId"),
        desk_id: Optional[str] = Query(None, alias="deskId"),
        session: Session = Depends(admin_session),
    ) -> Dict[str, Any]:
        """Remove a node and its children. Existing bookings are left untouched."""
        session.layout.remove(NodeRef(building_id, floor_id, desk_id))
        return {"ok": True, "dirty": session.layout.dirty}

    @app.put("/api/admin/desk-tags")
    async def admin_desk_tags(body: DeskTagsRequest, session: Session = Depends(admin_session)) -> Dict[str, Any]:
        session.layout.set_desk_tags(_ref(body), body.tags)
        return {"ok": True, "dirty": session.layout.dirty}

    @app.post("/api/admin/layout/save")
    async def admin_save_layout(session: Session = Depends(admin_session)) -> Dict[str, Any]:
        """Persist the session's layout. Overwrites any concurrent admin edits."""
        await state.layouts.save(session.layout)
        return {"ok": True, "dirty": session.layout.dirty}

    @app.get("/api/admin/dashboard")
    async def admin_dashboard_view(session: Session = Depends(admin_session)) -> Dict[str, Any]:
        now = _now()
        bookings = await state.bookings.list()
        return _dump(admin_dashboard(bookings, session.layout, now.date(), now.time()))

    @app.get("/api/admin/bookings")
    async def admin_all_bookings(session: Session = Depends(admin_session)) -> Dict[str, Any]:
        return {"items": _booking_list(await state.bookings.list(), session)}

    @app.get("/api/admin/bookings/upcoming")
    async def admin_upcoming(
        limit: int = Query(20, ge=1, le=500), session: Session = Depends(admin_session)
    ) -> Dict[str, Any]:
        bookings = await state.bookings.list(upcoming_query(_now().date(), limit))
        return {"items": [_dump(describe(b, session.layout)) for b in bookings]}

    # ---------- live updates ----------
    @app.websocket("/ws")
    async def live_updates(websocket: WebSocket, token: str = "") -> None:
        """Follow one scope's availability and the caller's own bookings.

        Client messages: ``{"type": "scope", "date": ..., "buildingId": ...,
        "floorId": ..., "start": ..., "end": ...}`` and ``{"type": "mine"}``.
        """
        try:
            session = await _resolve_session(websocket.app, token)
        except AuthError:
            await websocket.close(code=4401)
            return
        await websocket.accept()
        send_lock = asyncio.Lock()

        async def send(payload: Dict[str, Any]) -> None:
            async with send_lock:
                await websocket.send_json(payload)

        async def push_view(view: AvailabilityView) -> None:
            await send({"type": "availability", "view": _dump(view)})

        async def push_mine(bookings: List[Booking]) -> None:
            await send({"type": "myBookings", "items": _booking_list(bookings, session)})

        engine = session.open_availability(push_view)
        own: Optional[Subscription] = None
        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    await send({"type": "error", "error": "InvalidRequest", "detail": "expected a JSON object"})
                    continue
                try:
                    kind = message.get("type")
                    if kind == "scope":
                        view = engine.set_scope(Scope.model_validate(message))
                        if not engine.live:
                            # No subscription follows; the indeterminate view is final.
                            await push_view(view)
                    elif kind == "mine":
                        own = session.watch_own_bookings(push_mine)
                    else:
                        await send({"type": "error", "detail": f"unknown message type {kind!r}"})
                except DeskbookError as exc:
                    await send({"type": "error", "error": type(exc).__name__, "detail": exc.user_message()})
                except ValidationError as exc:
                    await send({"type": "error", "error": "InvalidRequest", "detail": str(exc)})
        except WebSocketDisconnect:
            logger.debug("Live connection closed for %s", session.user.email)
        finally:
            engine.close()
            if own is not None and session.own_bookings is own:
                session.stop_own_bookings()

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "ok": True,
            "time": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "sessions": len(state.registry),
        }


app = create_app()
