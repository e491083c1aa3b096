"""Pydantic data models used by the core and in API responses.

These models define the canonical shape of bookings, scopes and desk
availability. They are separate from the stored document layout so the
rest of the code never depends on how a particular store encodes a
booking; see ``deskbook.bookings`` for the conversion.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .intervals import TimeInterval


class CamelModel(BaseModel):
    """Base model that serialises field names in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserHandle(CamelModel):
    """An authenticated user as reported by the identity provider."""

    uid: str
    email: str


class Booking(CamelModel):
    """A reservation of one desk for one time interval on one date."""

    id: str
    user_id: str
    user_email: str
    date: dt.date
    interval: TimeInterval
    building_id: str
    floor_id: str
    desk_id: str
    created_at: Optional[dt.datetime] = None
    is_recurring: bool = False


class BookingView(Booking):
    """A booking with its location resolved to display names."""

    building_name: str
    floor_name: str


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Recurrence(CamelModel):
    frequency: Frequency
    end_date: dt.date


class BookingCandidate(CamelModel):
    """A booking as submitted by a user, before validation.

    Every field is optional here because validation is the guard's job:
    a missing field must surface as ``InvalidRequest``, not as a parse
    error somewhere else.
    """

    date: Optional[dt.date] = None
    building_id: Optional[str] = None
    floor_id: Optional[str] = None
    desk_id: Optional[str] = None
    start: Optional[dt.time] = None
    end: Optional[dt.time] = None


class BookingRequest(BookingCandidate):
    recurrence: Optional[Recurrence] = None


class Scope(CamelModel):
    """The (date, building, floor, time range) tuple behind one live query."""

    date: dt.date
    building_id: str
    floor_id: str
    start: Optional[dt.time] = None
    end: Optional[dt.time] = None

    @property
    def interval(self) -> Optional[TimeInterval]:
        """The scope's interval, or None while it is not fully specified."""
        if self.start is None or self.end is None or not self.start < self.end:
            return None
        return TimeInterval(start=self.start, end=self.end)

    def same_location(self, other: Optional["Scope"]) -> bool:
        return (
            other is not None
            and self.date == other.date
            and self.building_id == other.building_id
            and self.floor_id == other.floor_id
        )


class DeskState(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    INDETERMINATE = "indeterminate"


class DeskAvailability(CamelModel):
    desk_id: str
    tags: List[str] = []
    state: DeskState
    booking_ids: List[str] = []


class AvailabilityView(CamelModel):
    """Computed state of every desk on a floor for one scope."""

    scope: Scope
    desks: List[DeskAvailability]
    generated_at: dt.datetime

    def state_of(self, desk_id: str) -> Optional[DeskState]:
        for desk in self.desks:
            if desk.desk_id == desk_id:
                return desk.state
        return None


class NodeSummary(CamelModel):
    id: str
    name: str


class RecurringOutcome(CamelModel):
    """Result of a recurring submission: what got booked and what did not."""

    booked: List[str] = []
    booked_dates: List[dt.date] = []
    failed: List["FailedDate"] = []


class FailedDate(CamelModel):
    date: dt.date
    reason: str


RecurringOutcome.model_rebuild()


# --- API payloads -----------------------------------------------------------


class Credentials(CamelModel):
    email: str
    password: str


class SessionToken(CamelModel):
    token: str
    uid: str
    email: str
    is_admin: bool


class NameRequest(CamelModel):
    name: str


class DesksRequest(CamelModel):
    prefix: str
    count: int = Field(default=1)
    start_index: int = Field(default=1)
    tags: List[str] = []


class NodeRefModel(CamelModel):
    building_id: str
    floor_id: Optional[str] = None
    desk_id: Optional[str] = None


class RenameRequest(NodeRefModel):
    new_name: str


class DeskTagsRequest(NodeRefModel):
    tags: List[str] = []
