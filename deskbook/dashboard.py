"""Usage aggregates for the user and admin dashboards.

Pure functions over a list of bookings and the layout. Charts and exports
are rendered by clients from these numbers.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from typing import Dict, Iterable, List, Optional

from .layout import LayoutTree
from .models import Booking, BookingView, CamelModel

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class UserDashboard(CamelModel):
    monthly_bookings: int
    total_hours: float
    favorite_desk: Optional[str] = None
    upcoming: List[BookingView] = []
    floor_distribution: Dict[str, int] = {}
    weekday_counts: Dict[str, int] = {}


class AdminDashboard(CamelModel):
    total_bookings: int
    active_users: int
    bookings_today: int
    occupancy_rate: float
    total_desks: int
    available_desks: int
    popular_building: Optional[str] = None
    building_distribution: Dict[str, int] = {}
    top_users: List[Dict[str, object]] = []
    recent_bookings: List[BookingView] = []
    daily_counts: Dict[str, int] = {}


def describe(booking: Booking, layout: LayoutTree) -> BookingView:
    """Attach display names; removed buildings and floors get placeholder labels."""
    building_name, floor_name = layout.location_labels(booking.building_id, booking.floor_id)
    return BookingView(**booking.model_dump(), building_name=building_name, floor_name=floor_name)


def chronological(bookings: Iterable[Booking]) -> List[Booking]:
    return sorted(bookings, key=lambda b: (b.date, b.interval.start, b.interval.end))


def user_dashboard(
    bookings: List[Booking], layout: LayoutTree, today: dt.date, upcoming_limit: int = 5
) -> UserDashboard:
    this_month = [b for b in bookings if (b.date.year, b.date.month) == (today.year, today.month)]
    desks = Counter(b.desk_id for b in bookings)
    floors: Counter = Counter()
    for booking in bookings:
        building_name, floor_name = layout.location_labels(booking.building_id, booking.floor_id)
        floors[f"{building_name} / {floor_name}"] += 1
    weekdays = Counter(WEEKDAYS[b.date.weekday()] for b in bookings)
    upcoming = [describe(b, layout) for b in chronological(b for b in bookings if b.date >= today)]
    return UserDashboard(
        monthly_bookings=len(this_month),
        total_hours=round(sum(b.interval.hours for b in bookings), 2),
        favorite_desk=desks.most_common(1)[0][0] if desks else None,
        upcoming=upcoming[:upcoming_limit],
        floor_distribution=dict(floors),
        weekday_counts={day: weekdays.get(day, 0) for day in WEEKDAYS},
    )


def admin_dashboard(
    bookings: List[Booking],
    layout: LayoutTree,
    today: dt.date,
    now: dt.time,
    top_n: int = 5,
    recent_n: int = 5,
) -> AdminDashboard:
    all_desks = layout.all_desks()
    todays = [b for b in bookings if b.date == today]
    booked_today = {(b.building_id, b.floor_id, b.desk_id) for b in todays}
    busy_now = {
        (b.building_id, b.floor_id, b.desk_id) for b in todays if b.interval.start <= now < b.interval.end
    }
    desk_keys = {(building_id, floor_id, desk.id) for building_id, floor_id, desk in all_desks}

    buildings = Counter(layout.building_name(b.building_id) for b in bookings)
    users = Counter(b.user_email for b in bookings)
    recent = sorted(
        bookings,
        key=lambda b: b.created_at or dt.datetime.min.replace(tzinfo=dt.timezone.utc),
        reverse=True,
    )
    days = [today - dt.timedelta(days=offset) for offset in range(6, -1, -1)]
    per_day = Counter(b.date for b in bookings)

    return AdminDashboard(
        total_bookings=len(bookings),
        active_users=len({b.user_id for b in bookings}),
        bookings_today=len(todays),
        occupancy_rate=round(100 * len(booked_today & desk_keys) / len(desk_keys), 1) if desk_keys else 0.0,
        total_desks=len(desk_keys),
        available_desks=len(desk_keys - busy_now),
        popular_building=buildings.most_common(1)[0][0] if buildings else None,
        building_distribution=dict(buildings),
        top_users=[{"email": email, "bookings": count} for email, count in users.most_common(top_n)],
        recent_bookings=[describe(b, layout) for b in recent[:recent_n]],
        daily_counts={day.isoformat(): per_day.get(day, 0) for day in days},
    )
