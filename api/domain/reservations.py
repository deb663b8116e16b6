# SPDX-License-Identifier: Apache-2.0

"""
Reservation attempt state machine and result types.

A reservation attempt moves through:

    PENDING -> ELIGIBILITY_CHECKED -> SLOT_RESERVED -> CONFIRMED
    PENDING | ELIGIBILITY_CHECKED -> REJECTED
    SLOT_RESERVED -> ROLLED_BACK

REJECTED means nothing was persisted. ROLLED_BACK means a tentative
appointment was written and then removed again.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.entities import Appointment
from models.enums import (
    ErrorKind,
    ReservationErrorCode,
    ReservationOutcome,
    ReservationState
)
from domain.eligibility import EligibilityResult

ALLOWED_TRANSITIONS = {
    ReservationState.PENDING: {ReservationState.ELIGIBILITY_CHECKED, ReservationState.REJECTED},
    ReservationState.ELIGIBILITY_CHECKED: {ReservationState.SLOT_RESERVED, ReservationState.REJECTED},
    ReservationState.SLOT_RESERVED: {ReservationState.CONFIRMED, ReservationState.ROLLED_BACK},
    ReservationState.CONFIRMED: set(),
    ReservationState.REJECTED: set(),
    ReservationState.ROLLED_BACK: set(),
}

# Messages shown to donors for slot-level failures
SLOT_MESSAGES = {
    ReservationErrorCode.SLOT_FULL: "This time slot is now full. Please choose another time.",
    ReservationErrorCode.SLOT_TAKEN: "This time slot was just booked by someone else. Please choose another time.",
    ReservationErrorCode.SLOT_UNAVAILABLE: "This time slot is no longer available. Please choose another time.",
    ReservationErrorCode.SLOT_TOO_SOON: "Appointments must be booked at least {lead} minutes in advance. Please choose a later time.",
    ReservationErrorCode.PERSISTENCE_ERROR: "We could not complete your booking right now. Please try again in a moment.",
}


class InvalidTransitionError(ValueError):
    """Raised when a reservation attempt is moved along an illegal edge."""

    def __init__(self, current: ReservationState, target: ReservationState):
        super().__init__(f"Illegal reservation transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass
class ReservationAttempt:
    """Mutable state of one reservation attempt."""
    donor_id: str
    slot_id: str
    donation_type: str
    state: ReservationState = ReservationState.PENDING
    transitions: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.transitions.append(self.state.value)

    def can_advance(self, target: ReservationState) -> bool:
        return target in ALLOWED_TRANSITIONS[self.state]

    def advance(self, target: ReservationState) -> None:
        """
        Move to the target state.

        Raises:
            InvalidTransitionError: If the edge is not part of the state machine
        """
        if not self.can_advance(target):
            raise InvalidTransitionError(self.state, target)
        self.state = target
        self.transitions.append(target.value)


@dataclass
class ReservationResult:
    """Outcome reported to the caller of a reservation."""
    outcome: str
    slot_id: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    appointment: Optional[Appointment] = None
    eligibility: Optional[EligibilityResult] = None
    transitions: List[str] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.outcome == ReservationOutcome.CONFIRMED.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "slot_id": self.slot_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "retryable": self.retryable,
            "transitions": list(self.transitions),
            "appointment": self.appointment.model_dump(mode="json") if self.appointment else None,
            "eligibility": self.eligibility.to_dict() if self.eligibility else None
        }


@dataclass
class ReleaseResult:
    """Outcome of cancelling an appointment and freeing its spot."""
    appointment_id: str
    cancelled: bool
    capacity_released: bool
    attempts: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    appointment: Optional[Appointment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "cancelled": self.cancelled,
            "capacity_released": self.capacity_released,
            "attempts": self.attempts,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "appointment": self.appointment.model_dump(mode="json") if self.appointment else None
        }


@dataclass
class ReconcileResult:
    """Repairs applied to one slot."""
    slot_id: str
    orphans_deleted: List[str] = field(default_factory=list)
    holds_released: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.orphans_deleted or self.holds_released)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "orphans_deleted": list(self.orphans_deleted),
            "holds_released": list(self.holds_released)
        }


def slot_message(code: ReservationErrorCode, lead_minutes: int = 60) -> str:
    """Donor-facing message for a slot-level failure code."""
    return SLOT_MESSAGES[code].format(lead=lead_minutes)


def confirmed(attempt: ReservationAttempt, appointment: Appointment) -> ReservationResult:
    """Finish an attempt whose slot update was applied."""
    attempt.advance(ReservationState.CONFIRMED)
    return ReservationResult(
        outcome=ReservationOutcome.CONFIRMED.value,
        slot_id=attempt.slot_id,
        appointment=appointment,
        transitions=list(attempt.transitions)
    )


def rejected(
    attempt: ReservationAttempt,
    error_code: str,
    error_message: str,
    error_kind: ErrorKind,
    retryable: bool = False,
    eligibility: Optional[EligibilityResult] = None
) -> ReservationResult:
    """Finish an attempt that stopped before anything was written."""
    attempt.advance(ReservationState.REJECTED)
    return ReservationResult(
        outcome=ReservationOutcome.REJECTED.value,
        slot_id=attempt.slot_id,
        error_code=error_code,
        error_message=error_message,
        error_kind=error_kind.value,
        retryable=retryable,
        eligibility=eligibility,
        transitions=list(attempt.transitions)
    )


def rolled_back(
    attempt: ReservationAttempt,
    error_code: ReservationErrorCode,
    error_kind: ErrorKind,
    error_message: Optional[str] = None
) -> ReservationResult:
    """Finish an attempt whose tentative appointment was compensated."""
    attempt.advance(ReservationState.ROLLED_BACK)
    return ReservationResult(
        outcome=ReservationOutcome.ROLLED_BACK.value,
        slot_id=attempt.slot_id,
        error_code=error_code.value,
        error_message=error_message or slot_message(error_code),
        error_kind=error_kind.value,
        retryable=True,
        transitions=list(attempt.transitions)
    )
