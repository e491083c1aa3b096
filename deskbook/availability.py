"""Live desk availability for a scope.

The engine subscribes to the bookings of one (date, building, floor) and
recomputes the state of every desk on that floor on each snapshot. The
store can only filter on exact fields, so the time-range check happens
here: a desk is occupied iff some booking for it overlaps the scope's
interval. Floors hold tens of desks, so every snapshot triggers a full
recompute with no debouncing.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .bookings import BookingRecordStore, scope_query
from .intervals import overlaps
from .layout import Desk, LayoutTree
from .models import AvailabilityView, Booking, DeskAvailability, DeskState, Scope
from .store import Subscription

logger = logging.getLogger(__name__)

Listener = Callable[[AvailabilityView], Any]


def _utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(timezone.utc)


def compute_view(scope: Scope, desks: List[Desk], bookings: Optional[Iterable[Booking]]) -> AvailabilityView:
    """Compute desk states for ``scope``.

    ``bookings`` of ``None`` means the bookings are not known yet; every
    desk is then indeterminate, as it is when the scope has no complete
    interval.
    """
    interval = scope.interval
    if interval is None or bookings is None:
        states = [
            DeskAvailability(desk_id=d.id, tags=list(d.tags), state=DeskState.INDETERMINATE) for d in desks
        ]
        return AvailabilityView(scope=scope, desks=states, generated_at=_utcnow())

    occupants: Dict[str, List[str]] = {}
    for booking in bookings:
        if (
            booking.date == scope.date
            and booking.building_id == scope.building_id
            and booking.floor_id == scope.floor_id
            and overlaps(interval, booking.interval)
        ):
            occupants.setdefault(booking.desk_id, []).append(booking.id)

    states = []
    for desk in desks:
        booking_ids = occupants.get(desk.id, [])
        states.append(
            DeskAvailability(
                desk_id=desk.id,
                tags=list(desk.tags),
                state=DeskState.OCCUPIED if booking_ids else DeskState.AVAILABLE,
                booking_ids=booking_ids,
            )
        )
    return AvailabilityView(scope=scope, desks=states, generated_at=_utcnow())


def filter_view(
    view: AvailabilityView,
    tag: Optional[str] = None,
    state: Optional[DeskState] = None,
    search: Optional[str] = None,
) -> AvailabilityView:
    """Narrow a view by desk tag, desk state and a case-insensitive id search."""
    needle = (search or "").strip().lower()
    desks = [
        d
        for d in view.desks
        if (not tag or tag in d.tags) and (state is None or d.state == state) and needle in d.desk_id.lower()
    ]
    return view.model_copy(update={"desks": desks})


class AvailabilityEngine:
    """Keeps one scope's availability view current.

    Only one scope is live at a time: ``set_scope`` cancels the previous
    subscription before opening the next one, and snapshots belonging to a
    replaced scope are dropped.
    """

    def __init__(self, bookings: BookingRecordStore, layout: LayoutTree, listener: Optional[Listener] = None) -> None:
        self._bookings = bookings
        self._layout = layout
        self._listener = listener
        self._scope: Optional[Scope] = None
        self._desks: List[Desk] = []
        self._view: Optional[AvailabilityView] = None
        self._subscription: Optional[Subscription] = None
        self.last_error: Optional[str] = None

    @property
    def scope(self) -> Optional[Scope]:
        return self._scope

    @property
    def view(self) -> Optional[AvailabilityView]:
        return self._view

    @property
    def live(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def set_scope(self, scope: Scope) -> AvailabilityView:
        """Switch to ``scope`` and return its initial (indeterminate) view.

        Raises ``NotFound`` if the floor does not exist; the previous scope
        stays live in that case.
        """
        desks = self._layout.list_desks(scope.building_id, scope.floor_id)
        self._teardown()
        self._scope = scope
        self._desks = desks
        self._view = compute_view(scope, desks, None)
        self.last_error = None
        if scope.interval is None:
            logger.debug("Scope %s has no complete interval; not subscribing", scope)
            return self._view

        query = scope_query(scope.date, scope.building_id, scope.floor_id)
        self._subscription = self._bookings.subscribe(
            query,
            lambda bookings, bound=scope: self._apply(bound, bookings),
            self._on_error,
        )
        return self._view

    async def _apply(self, scope: Scope, bookings: List[Booking]) -> None:
        if scope is not self._scope:
            return
        view = compute_view(scope, self._desks, bookings)
        self._view = view
        if self._listener is not None:
            result = self._listener(view)
            if inspect.isawaitable(result):
                await result

    def _on_error(self, exc: Exception) -> None:
        logger.error("Availability live query failed: %s", exc)
        self.last_error = str(exc)

    async def settled(self) -> None:
        """Wait until all pending snapshots have been applied."""
        if self._subscription is not None:
            await self._subscription.settled()

    def _teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def close(self) -> None:
        self._teardown()
        self._scope = None
