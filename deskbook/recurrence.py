"""Recurring booking expansion.

A recurring request becomes one booking per generated date. Each date goes
through the guard on its own; a failure on one date is recorded and the
remaining dates are still attempted. Bookings already made are never
rolled back.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from .errors import DeskbookError, InvalidRequest, StoreError
from .guard import BookingGuard, validate_candidate
from .layout import LayoutTree
from .models import BookingCandidate, FailedDate, Frequency, RecurringOutcome, UserHandle

logger = logging.getLogger(__name__)


def expand(start_date: date, end_date: date, frequency: Frequency) -> List[date]:
    """Dates from ``start_date`` to ``end_date`` inclusive, one per ``frequency`` step.

    Monthly steps keep the start day of month, clamped to the last day of
    shorter months (Jan 31 -> Feb 29 -> Mar 31).
    """
    if end_date <= start_date:
        raise InvalidRequest("recurrence end date must be after the start date")
    frequency = Frequency(frequency)
    dates: List[date] = []
    step = 0
    while True:
        if frequency is Frequency.DAILY:
            current = start_date + timedelta(days=step)
        elif frequency is Frequency.WEEKLY:
            current = start_date + timedelta(weeks=step)
        else:
            current = start_date + relativedelta(months=step)
        if current > end_date:
            return dates
        dates.append(current)
        step += 1


async def submit_recurring(
    guard: BookingGuard,
    candidate: BookingCandidate,
    user: UserHandle,
    end_date: date,
    frequency: Frequency,
    layout: Optional[LayoutTree] = None,
) -> RecurringOutcome:
    """Book ``candidate`` on every date of the recurrence.

    The request itself is validated first, so an invalid request fails as a
    whole before any booking is made.
    """
    validate_candidate(candidate)
    dates = expand(candidate.date, end_date, frequency)
    outcome = RecurringOutcome()
    for day in dates:
        try:
            booking_id = await guard.submit(
                candidate.model_copy(update={"date": day}), user, layout=layout, is_recurring=True
            )
        except StoreError as exc:
            logger.exception("Store failure booking %s on %s: %s", candidate.desk_id, day, exc)
            outcome.failed.append(FailedDate(date=day, reason=exc.user_message()))
        except DeskbookError as exc:
            outcome.failed.append(FailedDate(date=day, reason=exc.user_message()))
        else:
            outcome.booked.append(booking_id)
            outcome.booked_dates.append(day)
    logger.info(
        "Recurring booking for %s: %d booked, %d failed", user.email, len(outcome.booked), len(outcome.failed)
    )
    return outcome
