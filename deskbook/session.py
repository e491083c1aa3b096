"""Per-client session context.

A ``Session`` owns everything that belongs to one signed-in client: the
user, the cached layout and the live subscriptions. Subscriptions are only
ever opened through the session, so signing out (``close``) releases all
of them. ``SessionRegistry`` maps bearer tokens to sessions.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Dict, List, Optional

from .availability import AvailabilityEngine, Listener
from .bookings import BookingRecordStore, user_query
from .identity import is_admin
from .layout import LayoutRepository, LayoutTree
from .models import Booking, UserHandle
from .store import Subscription

logger = logging.getLogger(__name__)


class Session:
    def __init__(
        self,
        token: str,
        user: UserHandle,
        admin: bool,
        layout: LayoutTree,
        bookings: BookingRecordStore,
    ) -> None:
        self.token = token
        self.user = user
        self.is_admin = admin
        self.layout = layout
        self._bookings = bookings
        self._engine: Optional[AvailabilityEngine] = None
        self._own_bookings: Optional[Subscription] = None
        self.closed = False

    @property
    def availability(self) -> Optional[AvailabilityEngine]:
        return self._engine

    def open_availability(self, listener: Optional[Listener] = None) -> AvailabilityEngine:
        """Return a fresh engine, closing the one previously opened."""
        if self._engine is not None:
            self._engine.close()
        self._engine = AvailabilityEngine(self._bookings, self.layout, listener)
        return self._engine

    @property
    def own_bookings(self) -> Optional[Subscription]:
        return self._own_bookings

    def watch_own_bookings(self, callback: Callable[[List[Booking]], Any]) -> Subscription:
        self.stop_own_bookings()
        self._own_bookings = self._bookings.subscribe(user_query(self.user.uid), callback)
        return self._own_bookings

    def stop_own_bookings(self) -> None:
        if self._own_bookings is not None:
            self._own_bookings.cancel()
            self._own_bookings = None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._engine is not None:
            self._engine.close()
            self._engine = None
        self.stop_own_bookings()
        logger.debug("Session closed for %s", self.user.email)


class SessionRegistry:
    def __init__(self, bookings: BookingRecordStore, layouts: LayoutRepository, admin_email: str) -> None:
        self._bookings = bookings
        self._layouts = layouts
        self._admin_email = admin_email
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, user: UserHandle, token: Optional[str] = None) -> Session:
        """Start a session for ``user``; the layout is loaded once, here."""
        token = token or secrets.token_urlsafe(32)
        layout = await self._layouts.load()
        session = Session(token, user, is_admin(user, self._admin_email), layout, self._bookings)
        self._sessions[token] = session
        logger.info("Session opened for %s%s", user.email, " (admin)" if session.is_admin else "")
        return session

    def get(self, token: str) -> Optional[Session]:
        return self._sessions.get(token)

    def close(self, token: str) -> None:
        session = self._sessions.pop(token, None)
        if session is not None:
            session.close()

    def close_user(self, uid: str) -> None:
        for token in [t for t, s in self._sessions.items() if s.user.uid == uid]:
            self.close(token)

    def close_all(self) -> None:
        for token in list(self._sessions):
            self.close(token)

    def on_auth_state(self, uid: str, user: Optional[UserHandle]) -> None:
        """Auth-state listener: a sign-out ends every session of that user."""
        if user is None:
            self.close_user(uid)
