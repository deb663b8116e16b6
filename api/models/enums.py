# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the donor booking platform.
"""

from enum import Enum


class DonationType(str, Enum):
    """Donation types a slot can be booked for."""
    WHOLE_BLOOD = "whole_blood"
    PLASMA = "plasma"

    @classmethod
    def parse(cls, value) -> "DonationType":
        """
        Resolve a donation type from its canonical value or a legacy spelling.

        Older donor records store "Blood" and "Plasma"; both are accepted.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unsupported donation type: {value!r}")

        normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
        aliases = {
            "blood": cls.WHOLE_BLOOD,
            "whole_blood": cls.WHOLE_BLOOD,
            "plasma": cls.PLASMA,
        }
        if normalized not in aliases:
            raise ValueError(f"Unsupported donation type: {value!r}")
        return aliases[normalized]


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"


class DonationRecordStatus(str, Enum):
    """Status of a row in the external donation history."""
    COMPLETED = "COMPLETED"


class BookingChannel(str, Enum):
    """Channel through which an appointment was booked."""
    ONLINE = "online"
    PHONE = "phone"
    WALK_IN = "walk_in"


class SlotStatus(str, Enum):
    """Demand classification of a single slot."""
    AVAILABLE = "available"
    FILLING = "filling"


class RiskLevel(str, Enum):
    """Risk that a slot sells out before the donor completes booking."""
    NORMAL = "normal"
    HIGH = "high"


class DayStatus(str, Enum):
    """Demand classification of a calendar day."""
    AVAILABLE = "available"
    FILLING = "filling"
    HIGH_DEMAND = "high-demand"


class ReservationState(str, Enum):
    """States of a single reservation attempt."""
    PENDING = "PENDING"
    ELIGIBILITY_CHECKED = "ELIGIBILITY_CHECKED"
    SLOT_RESERVED = "SLOT_RESERVED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    ROLLED_BACK = "ROLLED_BACK"


class ReservationOutcome(str, Enum):
    """Terminal outcomes reported to callers."""
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    ROLLED_BACK = "ROLLED_BACK"


class ErrorKind(str, Enum):
    """Error taxonomy shared by results and HTTP responses."""
    VALIDATION = "validation"
    ELIGIBILITY = "eligibility"
    CAPACITY_CONFLICT = "capacity_conflict"
    PERSISTENCE = "persistence"


class EligibilityErrorCode(str, Enum):
    """Eligibility rule violations."""
    INSUFFICIENT_INTERVAL = "INSUFFICIENT_INTERVAL"
    MAX_DONATIONS_REACHED = "MAX_DONATIONS_REACHED"
    INSUFFICIENT_INTERVAL_PLASMA = "INSUFFICIENT_INTERVAL_PLASMA"


class ReservationErrorCode(str, Enum):
    """Slot and persistence failures during reservation or release."""
    SLOT_FULL = "SLOT_FULL"
    SLOT_TAKEN = "SLOT_TAKEN"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    SLOT_TOO_SOON = "SLOT_TOO_SOON"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    RELEASE_CONFLICT = "RELEASE_CONFLICT"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""
    RESERVE = "reserve"
    REJECT = "reject"
    ROLLBACK = "rollback"
    CANCEL = "cancel"
    RECONCILE = "reconcile"
