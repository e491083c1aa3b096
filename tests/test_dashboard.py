import datetime as dt

from deskbook.dashboard import admin_dashboard, describe, user_dashboard
from deskbook.intervals import TimeInterval
from deskbook.layout import REMOVED_BUILDING, NodeRef
from deskbook.models import Booking

TODAY = dt.date(2024, 3, 4)  # a Monday


def make(desk, day, start, end, user="u-alice", email="alice@example.com", building="building-a", floor="floor-1", created=None):
    return Booking(
        id=f"{day}-{desk}-{start}",
        user_id=user,
        user_email=email,
        date=dt.date.fromisoformat(day),
        interval=TimeInterval(start=dt.time.fromisoformat(start), end=dt.time.fromisoformat(end)),
        building_id=building,
        floor_id=floor,
        desk_id=desk,
        created_at=created,
    )


def test_user_dashboard(layout):
    bookings = [
        make("A1-01", "2024-03-06", "09:00", "10:30"),
        make("A1-01", "2024-03-04", "13:00", "14:00"),
        make("B1-02", "2024-02-26", "09:00", "12:00", building="building-b"),
    ]
    summary = user_dashboard(bookings, layout, TODAY)
    assert summary.monthly_bookings == 2
    assert summary.total_hours == 5.5
    assert summary.favorite_desk == "A1-01"
    assert [b.date for b in summary.upcoming] == [dt.date(2024, 3, 4), dt.date(2024, 3, 6)]
    assert summary.floor_distribution == {"Building A / Floor 1": 2, "Building B / Floor 1 (IT)": 1}
    assert summary.weekday_counts["Mon"] == 2
    assert summary.weekday_counts["Wed"] == 1


def test_empty_user_dashboard(layout):
    summary = user_dashboard([], layout, TODAY)
    assert summary.favorite_desk is None
    assert summary.total_hours == 0
    assert sum(summary.weekday_counts.values()) == 0


def test_admin_dashboard(layout):
    created = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)
    bookings = [
        make("A1-01", "2024-03-04", "09:00", "10:00", created=created),
        make("A1-02", "2024-03-04", "11:00", "12:00", created=created + dt.timedelta(hours=1)),
        make("B2-01", "2024-03-04", "08:00", "18:00", user="u-bob", email="bob@example.com", building="building-b", floor="floor-2"),
        make("A1-01", "2024-03-01", "09:00", "10:00", created=created + dt.timedelta(hours=2)),
    ]
    summary = admin_dashboard(bookings, layout, TODAY, dt.time(9, 30))
    assert summary.total_bookings == 4
    assert summary.active_users == 2
    assert summary.bookings_today == 3
    assert summary.total_desks == 13
    assert summary.occupancy_rate == round(100 * 3 / 13, 1)
    # A1-01 and B2-01 are busy at 09:30
    assert summary.available_desks == 11
    assert summary.popular_building == "Building A"
    assert summary.building_distribution == {"Building A": 3, "Building B": 1}
    assert summary.top_users[0] == {"email": "alice@example.com", "bookings": 3}
    assert summary.recent_bookings[0].date == dt.date(2024, 3, 1)
    assert list(summary.daily_counts) == [f"2024-02-{d}" for d in (27, 28, 29)] + [f"2024-03-0{d}" for d in (1, 2, 3, 4)]
    assert summary.daily_counts["2024-03-04"] == 3


def test_removed_locations_are_labelled(layout):
    booking = make("B1-01", "2024-03-04", "09:00", "10:00", building="building-b")
    layout.remove(NodeRef("building-b"))
    view = describe(booking, layout)
    assert view.building_name == REMOVED_BUILDING
    assert admin_dashboard([booking], layout, TODAY, dt.time(9)).popular_building == REMOVED_BUILDING
