# SPDX-License-Identifier: Apache-2.0

"""
Availability projection for the booking calendar.

Pure functions turning slot records into the demand-annotated view the
booking calendar renders. Nothing here is persisted; the projection is
recomputed on every read.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.entities import AvailabilitySlot
from models.enums import DayStatus, RiskLevel, SlotStatus

DEFAULT_BOOKING_TIMEZONE = "Europe/Rome"

# Spots-left thresholds, inclusive
FILLING_THRESHOLD = 3
HIGH_RISK_THRESHOLD = 2


@dataclass
class SlotView:
    """Demand-annotated view of one slot."""
    slot_id: str
    center_id: str
    donation_type: str
    start: datetime
    iso_date: str
    time: str
    capacity: int
    spots_left: int
    status: str
    risk_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "center_id": self.center_id,
            "donation_type": self.donation_type,
            "start": self.start.isoformat(),
            "iso_date": self.iso_date,
            "time": self.time,
            "capacity": self.capacity,
            "spots_left": self.spots_left,
            "status": self.status,
            "risk_level": self.risk_level
        }


@dataclass
class DayAvailability:
    """All open slots of one local calendar day."""
    iso_date: str
    slots: List[SlotView] = field(default_factory=list)

    @property
    def total_spots_left(self) -> int:
        return sum(view.spots_left for view in self.slots)

    @property
    def status(self) -> str:
        return day_status(self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iso_date": self.iso_date,
            "status": self.status,
            "total_spots_left": self.total_spots_left,
            "slots": [view.to_dict() for view in self.slots]
        }


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is unknown
    """
    if not name:
        name = DEFAULT_BOOKING_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def spots_left(capacity: int, current_bookings: int) -> int:
    """Remaining spots of a slot."""
    return capacity - current_bookings


def slot_status(remaining: int) -> str:
    """Slot demand status: filling once few spots remain."""
    if remaining <= FILLING_THRESHOLD:
        return SlotStatus.FILLING.value
    return SlotStatus.AVAILABLE.value


def risk_level(remaining: int) -> str:
    """Risk that the slot sells out before the donor finishes booking."""
    if remaining <= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH.value
    return RiskLevel.NORMAL.value


def classify_slot(slot: AvailabilitySlot, tz: Optional[tzinfo] = None) -> SlotView:
    """
    Build the demand view of a slot.

    Args:
        slot: Slot record
        tz: Timezone used for the local date and time labels

    Returns:
        SlotView with status and risk level
    """
    tz = tz or resolve_timezone(DEFAULT_BOOKING_TIMEZONE)
    local_start = slot.slot_datetime.astimezone(tz)
    remaining = spots_left(slot.capacity, slot.current_bookings)

    return SlotView(
        slot_id=slot.id,
        center_id=slot.center_id,
        donation_type=slot.donation_type,
        start=slot.slot_datetime,
        iso_date=local_start.date().isoformat(),
        time=local_start.strftime("%H:%M"),
        capacity=slot.capacity,
        spots_left=remaining,
        status=slot_status(remaining),
        risk_level=risk_level(remaining)
    )


def day_status(views: List[SlotView]) -> str:
    """
    Demand status of a day.

    High demand when every slot is high risk, filling when any slot is
    filling, available otherwise.
    """
    if views and all(view.risk_level == RiskLevel.HIGH.value for view in views):
        return DayStatus.HIGH_DEMAND.value
    if any(view.status == SlotStatus.FILLING.value for view in views):
        return DayStatus.FILLING.value
    return DayStatus.AVAILABLE.value


def project_availability(
    slots: Iterable[AvailabilitySlot],
    tz: Optional[tzinfo] = None
) -> List[DayAvailability]:
    """
    Group slots into ordered day buckets in the booking timezone.

    Slots without spots left are dropped even if the caller already
    filtered them.

    Args:
        slots: Slot records, in any order
        tz: Booking timezone

    Returns:
        Day buckets ordered by date, slots ordered by start
    """
    tz = tz or resolve_timezone(DEFAULT_BOOKING_TIMEZONE)
    views = [classify_slot(slot, tz) for slot in slots]
    views = [view for view in views if view.spots_left > 0]
    views.sort(key=lambda view: view.start)

    days: "OrderedDict[str, DayAvailability]" = OrderedDict()
    for view in views:
        days.setdefault(view.iso_date, DayAvailability(iso_date=view.iso_date)).slots.append(view)

    return list(days.values())
