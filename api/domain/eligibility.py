# SPDX-License-Identifier: Apache-2.0

"""
Donation eligibility rules.

This module contains pure functions deciding whether a donor may donate a
given donation type on a given date, based on their donation history.
Italian rules apply: whole blood needs 90 days between donations and is
capped at 4 donations per calendar year; plasma needs 14 days between
donations.
"""

from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, Iterable, Optional, Union

from models.entities import Appointment, DonationSummary, DonorDonationProfile
from models.enums import DonationType, EligibilityErrorCode

WHOLE_BLOOD_MIN_INTERVAL_DAYS = 90
PLASMA_MIN_INTERVAL_DAYS = 14
WHOLE_BLOOD_MAX_PER_YEAR = 4

DateLike = Union[date, datetime]


@dataclass
class EligibilityResult:
    """Outcome of an eligibility evaluation."""
    is_eligible: bool
    donation_type: str
    proposed_date: date
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    days_since_last_donation: Optional[int] = None
    days_remaining: Optional[int] = None
    earliest_eligible_date: Optional[date] = None
    next_eligible_year: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with ISO dates for JSON responses."""
        data = asdict(self)
        for key in ("proposed_date", "earliest_eligible_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def as_calendar_date(value: DateLike) -> date:
    """Reduce a date or datetime to its calendar date."""
    if isinstance(value, datetime):
        return value.date()
    return value


def minimum_interval_days(donation_type: Union[str, DonationType]) -> int:
    """Minimum number of days required between two donations of a type."""
    if DonationType.parse(donation_type) == DonationType.PLASMA:
        return PLASMA_MIN_INTERVAL_DAYS
    return WHOLE_BLOOD_MIN_INTERVAL_DAYS


def earliest_booking_date(
    last_donation_date: Optional[DateLike],
    donation_type: Union[str, DonationType]
) -> Optional[date]:
    """
    First date on which the next donation of a type can be booked.

    Returns None for donors with no previous donation of that type.
    """
    if last_donation_date is None:
        return None
    last = as_calendar_date(last_donation_date)
    return last + timedelta(days=minimum_interval_days(donation_type))


def evaluate(
    last_relevant_donation_date: Optional[DateLike],
    donations_this_year: int,
    proposed_date: DateLike,
    donation_type: Union[str, DonationType]
) -> EligibilityResult:
    """
    Decide whether a donation on proposed_date is allowed.

    For whole blood the annual cap is checked before the interval rule, so a
    donor at the cap is told about the cap even if the interval is also too
    short. Days are counted between calendar dates; a proposed date before
    the last donation yields a negative count and is rejected.

    Args:
        last_relevant_donation_date: Most recent completed or scheduled donation of this type
        donations_this_year: Completed plus scheduled donations in the proposed date's year
        proposed_date: Date (or datetime) of the intended donation
        donation_type: Donation type, canonical value or legacy spelling

    Returns:
        EligibilityResult describing the decision
    """
    dtype = DonationType.parse(donation_type)
    proposed = as_calendar_date(proposed_date)

    if dtype == DonationType.WHOLE_BLOOD and donations_this_year >= WHOLE_BLOOD_MAX_PER_YEAR:
        next_year = proposed.year + 1
        return EligibilityResult(
            is_eligible=False,
            donation_type=dtype.value,
            proposed_date=proposed,
            error_code=EligibilityErrorCode.MAX_DONATIONS_REACHED.value,
            error_message=(
                f"You have reached the maximum of {WHOLE_BLOOD_MAX_PER_YEAR} blood donations "
                f"for {proposed.year}. You can book again from January {next_year}."
            ),
            next_eligible_year=next_year
        )

    if last_relevant_donation_date is None:
        return EligibilityResult(is_eligible=True, donation_type=dtype.value, proposed_date=proposed)

    last = as_calendar_date(last_relevant_donation_date)
    days_since = (proposed - last).days
    required = minimum_interval_days(dtype)

    if days_since >= required:
        return EligibilityResult(
            is_eligible=True,
            donation_type=dtype.value,
            proposed_date=proposed,
            days_since_last_donation=days_since
        )

    earliest = last + timedelta(days=required)
    days_remaining = required - days_since
    label = "plasma" if dtype == DonationType.PLASMA else "blood"
    code = (
        EligibilityErrorCode.INSUFFICIENT_INTERVAL_PLASMA
        if dtype == DonationType.PLASMA
        else EligibilityErrorCode.INSUFFICIENT_INTERVAL
    )

    if days_since < 0:
        message = (
            f"You already have a {label} donation on {last.isoformat()}, after "
            f"{proposed.isoformat()}. {label.capitalize()} donations must be at least "
            f"{required} days apart; the earliest date after it is {earliest.isoformat()}."
        )
    else:
        message = (
            f"You must wait {required} days between {label} donations. Your last donation "
            f"was {days_since} days before this date. Please wait {days_remaining} more days "
            f"(earliest date: {earliest.isoformat()})."
        )

    return EligibilityResult(
        is_eligible=False,
        donation_type=dtype.value,
        proposed_date=proposed,
        error_code=code.value,
        error_message=message,
        days_since_last_donation=days_since,
        days_remaining=days_remaining,
        earliest_eligible_date=earliest
    )


def build_profile(
    donor_id: str,
    donation_type: Union[str, DonationType],
    summary: DonationSummary,
    scheduled: Iterable[Appointment],
    year: int,
    now: datetime,
    tz: tzinfo
) -> DonorDonationProfile:
    """
    Combine completed history and scheduled appointments into a profile.

    Every scheduled appointment of the type counts as a relevant donation for
    the interval rule. Only upcoming scheduled appointments falling in ``year``
    count towards the annual cap; past ones are expected to show up in the
    completed history.

    Args:
        donor_id: Donor identifier
        donation_type: Donation type of the profile
        summary: Completed donations for ``year`` from the donor store
        scheduled: SCHEDULED appointments of the donor for this type
        year: Calendar year of the proposed donation
        now: Current instant, used to tell upcoming from past appointments
        tz: Booking timezone used to derive calendar dates

    Returns:
        DonorDonationProfile for the evaluator
    """
    dtype = DonationType.parse(donation_type)
    last = summary.last_donation_date
    upcoming_this_year = 0

    for appointment in scheduled:
        if DonationType.parse(appointment.donation_type) != dtype:
            continue
        local_date = appointment.appointment_datetime.astimezone(tz).date()
        if last is None or local_date > last:
            last = local_date
        if local_date.year == year and appointment.appointment_datetime >= now:
            upcoming_this_year += 1

    return DonorDonationProfile(
        donor_id=donor_id,
        donation_type=dtype,
        last_donation_date=last,
        donations_completed_this_year=summary.donations_completed,
        scheduled_this_year=upcoming_this_year
    )
