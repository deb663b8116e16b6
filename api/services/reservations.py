# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Reservation coordinator.

Orchestrates eligibility, the tentative appointment write, the conditional
slot update and compensation. There is no in-process lock: correctness
under concurrency rests entirely on the slot store's compare-and-swap,
which only applies when the slot's booking count and version are still the
ones read just before the write.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain import eligibility as eligibility_rules
from domain.availability import DayAvailability, project_availability
from domain.eligibility import EligibilityResult
from domain.reservations import (
    ReconcileResult,
    ReleaseResult,
    ReservationAttempt,
    ReservationResult,
    confirmed,
    rejected,
    rolled_back,
    slot_message
)
from middleware.error_handler import (
    AuthorizationException,
    PersistenceException,
    StoreTimeoutException,
    UnknownAppointmentException,
    UnknownSlotException,
    ValidationException
)
from models.base import utc_now
from models.entities import Appointment, AvailabilitySlot, DonationCenter, DonorContext, DonorDonationProfile
from models.enums import (
    AppointmentStatus,
    AuditAction,
    DonationType,
    ErrorKind,
    ReservationErrorCode,
    ReservationOutcome,
    ReservationState
)
from services.slot_catalog import SlotCatalog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_RELEASE_MAX_ATTEMPTS = 3
DEFAULT_RECONCILE_GRACE_MINUTES = 15

# Outcomes of removing one appointment's hold from a slot
HOLD_RELEASED = "released"
HOLD_NOT_HELD = "not_held"
HOLD_CONFLICT = "conflict"

APPOINTMENT_ENTITY = "appointment"
SLOT_ENTITY = "availability_slot"


class ReservationCoordinator:
    """Books, cancels and repairs donor appointments against capacity-bounded slots."""

    def __init__(
        self,
        slot_catalog: SlotCatalog,
        slot_store,
        appointment_store,
        donor_store,
        audit_service=None,
        release_max_attempts: int = DEFAULT_RELEASE_MAX_ATTEMPTS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.slot_catalog = slot_catalog
        self.slot_store = slot_store
        self.appointment_store = appointment_store
        self.donor_store = donor_store
        self.audit_service = audit_service
        self.release_max_attempts = max(1, release_max_attempts)
        self.clock = clock or slot_catalog.clock
        self.tz = slot_catalog.tz

    # Input handling

    def _require_context(self, donor_context: Optional[DonorContext]) -> DonorContext:
        if donor_context is None:
            raise ValidationException(
                "Donor context is required",
                [{"field": "donor_context", "message": "An authenticated donor is required"}]
            )
        return donor_context

    def _parse_donation_type(self, donation_type: Union[str, DonationType, None]) -> DonationType:
        if donation_type is None:
            raise ValidationException(
                "Donation type is required",
                [{"field": "donation_type", "message": "Field required"}]
            )
        try:
            return DonationType.parse(donation_type)
        except ValueError as e:
            raise ValidationException(
                str(e),
                [{"field": "donation_type", "message": str(e)}]
            ) from e

    def _local_date(self, value: Union[date, datetime]) -> date:
        """Calendar date of an instant in the booking timezone."""
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.date()
            return value.astimezone(self.tz).date()
        return value

    def load_profile(
        self,
        donor_context: DonorContext,
        donation_type: DonationType,
        proposed_date: date,
        now: Optional[datetime] = None
    ) -> DonorDonationProfile:
        """Donation profile for the calendar year of the proposed date."""
        with tracer.start_as_current_span("reservation.load_profile") as span:
            span.set_attributes({
                "donor.id": donor_context.donor_id,
                "donation.type": donation_type.value,
                "donation.year": proposed_date.year
            })
            summary = self.donor_store.get_donation_summary(
                donor_context.org_id,
                donor_context.donor_id,
                donation_type,
                proposed_date.year
            )
            scheduled = self.appointment_store.list_for_donor(
                donor_context.org_id,
                donor_context.donor_id,
                donation_type=donation_type,
                status=AppointmentStatus.SCHEDULED
            )
            return eligibility_rules.build_profile(
                donor_context.donor_id,
                donation_type,
                summary,
                scheduled,
                proposed_date.year,
                now or self.clock(),
                self.tz
            )

    # Read operations

    def list_centers(self, donor_context: DonorContext) -> List[DonationCenter]:
        """Active donation centers of the donor's organization."""
        donor_context = self._require_context(donor_context)
        return self.slot_catalog.list_centers(donor_context.org_id)

    def list_availability(
        self,
        donor_context: Union[DonorContext, str],
        center_id: str,
        donation_type: Union[str, DonationType]
    ) -> List[DayAvailability]:
        """
        Bookable slots of a center grouped into day buckets.

        Accepts a donor context or a bare organization id, since availability
        is the same for every donor of an organization.
        """
        org_id = donor_context.org_id if isinstance(donor_context, DonorContext) else donor_context
        if not org_id:
            raise ValidationException("Organization is required")
        if not center_id:
            raise ValidationException(
                "center_id is required",
                [{"field": "center_id", "message": "Field required"}]
            )
        dtype = self._parse_donation_type(donation_type)

        with tracer.start_as_current_span("reservation.list_availability") as span:
            span.set_attributes({
                "organization.id": org_id,
                "center.id": center_id,
                "donation.type": dtype.value
            })
            slots = self.slot_catalog.list_open_slots(org_id, center_id, dtype)
            days = project_availability(slots, self.tz)
            span.set_attribute("availability.days", len(days))
            return days

    def list_appointments(
        self,
        donor_context: DonorContext,
        include_cancelled: bool = False,
        donation_type: Union[str, DonationType, None] = None
    ) -> List[Appointment]:
        """The donor's own appointments, ordered by date."""
        donor_context = self._require_context(donor_context)
        dtype = self._parse_donation_type(donation_type) if donation_type else None
        status = None if include_cancelled else AppointmentStatus.SCHEDULED
        return self.appointment_store.list_for_donor(
            donor_context.org_id,
            donor_context.donor_id,
            donation_type=dtype,
            status=status
        )

    def check_eligibility(
        self,
        donor_context: DonorContext,
        proposed_date: Union[date, datetime],
        donation_type: Union[str, DonationType]
    ) -> EligibilityResult:
        """Standalone eligibility check against the donor's history."""
        donor_context = self._require_context(donor_context)
        if proposed_date is None:
            raise ValidationException(
                "proposed_date is required",
                [{"field": "proposed_date", "message": "Field required"}]
            )
        dtype = self._parse_donation_type(donation_type)
        proposed = self._local_date(proposed_date)

        with tracer.start_as_current_span("reservation.check_eligibility") as span:
            profile = self.load_profile(donor_context, dtype, proposed)
            result = eligibility_rules.evaluate(
                profile.last_donation_date,
                profile.donations_this_year,
                proposed,
                dtype
            )
            span.set_attributes({
                "donor.id": donor_context.donor_id,
                "eligibility.eligible": result.is_eligible,
                "eligibility.code": result.error_code or ""
            })
            return result

    # Reservation

    def reserve(
        self,
        donor_context: DonorContext,
        slot_id: str,
        donation_type: Union[str, DonationType]
    ) -> ReservationResult:
        """
        Reserve one spot on a slot for the donor.

        Returns CONFIRMED when the slot write was applied, REJECTED when the
        attempt stopped before anything was written, and ROLLED_BACK when a
        tentative appointment was written and then compensated.

        Raises:
            ValidationException: Missing donor, slot id or donation type mismatch
            UnknownSlotException: The slot does not exist
            PersistenceException: Storage failed before anything was written
        """
        donor_context = self._require_context(donor_context)
        if not slot_id or not str(slot_id).strip():
            raise ValidationException(
                "slot_id is required",
                [{"field": "slot_id", "message": "Field required"}]
            )
        dtype = self._parse_donation_type(donation_type)
        attempt = ReservationAttempt(
            donor_id=donor_context.donor_id,
            slot_id=slot_id,
            donation_type=dtype.value
        )

        with tracer.start_as_current_span("reservation.reserve") as span:
            span.set_attributes({
                "donor.id": donor_context.donor_id,
                "organization.id": donor_context.org_id,
                "slot.id": slot_id,
                "donation.type": dtype.value
            })

            slot = self.slot_catalog.get_slot(donor_context.org_id, slot_id)
            if slot is None:
                raise UnknownSlotException(slot_id)
            if DonationType.parse(slot.donation_type) != dtype:
                raise ValidationException(
                    f"Slot {slot_id} is for {slot.donation_type} donations, not {dtype.value}",
                    [{"field": "donation_type", "message": "Does not match the slot's donation type"}]
                )

            now = self.clock()
            reason = self.slot_catalog.unavailability_reason(slot, now)
            if reason is not None:
                result = rejected(
                    attempt,
                    reason.value,
                    slot_message(reason, self.slot_catalog.min_lead_minutes),
                    ErrorKind.CAPACITY_CONFLICT,
                    retryable=True
                )
                return self._finish(donor_context, attempt, result, span)

            proposed = self._local_date(slot.slot_datetime)
            profile = self.load_profile(donor_context, dtype, proposed, now)
            eligibility = eligibility_rules.evaluate(
                profile.last_donation_date,
                profile.donations_this_year,
                proposed,
                dtype
            )
            if not eligibility.is_eligible:
                result = rejected(
                    attempt,
                    eligibility.error_code,
                    eligibility.error_message,
                    ErrorKind.ELIGIBILITY,
                    retryable=False,
                    eligibility=eligibility
                )
                return self._finish(donor_context, attempt, result, span)

            attempt.advance(ReservationState.ELIGIBILITY_CHECKED)

            appointment = Appointment(
                organization_id=donor_context.org_id,
                donor_id=donor_context.donor_id,
                slot_id=slot.id,
                center_id=slot.center_id,
                appointment_datetime=slot.slot_datetime,
                donation_type=dtype,
                created_at=now,
                updated_at=now,
                created_by=donor_context.donor_id,
                updated_by=donor_context.donor_id
            )

            attempt.advance(ReservationState.SLOT_RESERVED)
            try:
                self.appointment_store.insert(appointment)
                result = self._claim_spot(donor_context, attempt, appointment)
            except PersistenceException as e:
                span.record_exception(e)
                logger.error(
                    "Persistence failure during reservation",
                    extra={
                        "donor_id": donor_context.donor_id,
                        "slot_id": slot_id,
                        "appointment_id": appointment.id,
                        "operation": e.operation,
                        "error": str(e)
                    }
                )
                self._compensate(donor_context, appointment, "persistence_error")
                result = rolled_back(attempt, ReservationErrorCode.PERSISTENCE_ERROR, ErrorKind.PERSISTENCE)

            return self._finish(donor_context, attempt, result, span)

    def _claim_spot(
        self,
        donor_context: DonorContext,
        attempt: ReservationAttempt,
        appointment: Appointment
    ) -> ReservationResult:
        """Re-read the slot and conditionally take one spot for the appointment."""
        org_id = donor_context.org_id

        with tracer.start_as_current_span("reservation.claim_spot") as span:
            current = self.slot_catalog.get_slot(org_id, appointment.slot_id)
            if current is None:
                self._compensate(donor_context, appointment, "slot_missing")
                return rolled_back(attempt, ReservationErrorCode.SLOT_UNAVAILABLE, ErrorKind.CAPACITY_CONFLICT)

            new_bookings = current.current_bookings + 1
            span.set_attributes({
                "slot.current_bookings": current.current_bookings,
                "slot.capacity": current.capacity,
                "slot.version": current.version
            })
            if new_bookings > current.capacity:
                self._compensate(donor_context, appointment, "slot_full")
                return rolled_back(attempt, ReservationErrorCode.SLOT_FULL, ErrorKind.CAPACITY_CONFLICT)

            try:
                applied = self.slot_store.compare_and_swap(
                    org_id,
                    current.id,
                    expected_bookings=current.current_bookings,
                    expected_version=current.version,
                    new_bookings=new_bookings,
                    appointment_id=appointment.id,
                    actor_id=donor_context.donor_id
                )
            except StoreTimeoutException:
                applied = self._resolve_unknown_claim(org_id, appointment)
                if not applied:
                    self._compensate(donor_context, appointment, "slot_write_timeout")
                    return rolled_back(attempt, ReservationErrorCode.PERSISTENCE_ERROR, ErrorKind.PERSISTENCE)

            if not applied:
                self._compensate(donor_context, appointment, "slot_taken")
                return rolled_back(attempt, ReservationErrorCode.SLOT_TAKEN, ErrorKind.CAPACITY_CONFLICT)

            return confirmed(attempt, appointment)

    def _resolve_unknown_claim(self, org_id: str, appointment: Appointment) -> bool:
        """
        After a timed-out slot write, check whether the spot was actually taken.

        If this re-read fails too, the PersistenceException reaches reserve(),
        which compensates the appointment. A write that did land then leaves
        the slot holding an appointment id with nothing behind it, which
        reconcile_slot releases as a phantom hold.
        """
        slot = self.slot_store.get(org_id, appointment.slot_id)
        applied = slot is not None and slot.holds(appointment.id)
        logger.warning(
            "Slot write timed out; resolved by re-reading the slot",
            extra={
                "slot_id": appointment.slot_id,
                "appointment_id": appointment.id,
                "applied": applied
            }
        )
        return applied

    def _compensate(self, donor_context: DonorContext, appointment: Appointment, reason: str) -> bool:
        """Delete a tentative appointment; failures leave an orphan for reconcile_slot."""
        try:
            deleted = self.appointment_store.delete(donor_context.org_id, appointment.id)
        except PersistenceException as e:
            logger.critical(
                "Compensating delete failed; tentative appointment left behind",
                extra={
                    "appointment_id": appointment.id,
                    "slot_id": appointment.slot_id,
                    "donor_id": donor_context.donor_id,
                    "reason": reason,
                    "error": str(e)
                }
            )
            return False

        logger.info(
            "Tentative appointment compensated",
            extra={
                "appointment_id": appointment.id,
                "slot_id": appointment.slot_id,
                "reason": reason,
                "deleted": deleted
            }
        )
        return True

    def _finish(
        self,
        donor_context: DonorContext,
        attempt: ReservationAttempt,
        result: ReservationResult,
        span
    ) -> ReservationResult:
        span.set_attributes({
            "reservation.outcome": result.outcome,
            "reservation.error_code": result.error_code or "",
            "reservation.transitions": ",".join(result.transitions)
        })
        if result.outcome == ReservationOutcome.ROLLED_BACK.value and result.error_kind == ErrorKind.PERSISTENCE.value:
            span.set_status(Status(StatusCode.ERROR, result.error_code))

        log = logger.info if result.confirmed else logger.warning
        log(
            f"Reservation {result.outcome.lower()}",
            extra={
                "donor_id": donor_context.donor_id,
                "org_id": donor_context.org_id,
                "slot_id": attempt.slot_id,
                "outcome": result.outcome,
                "error_code": result.error_code,
                "transitions": result.transitions
            }
        )

        if result.confirmed:
            self._audit(
                donor_context, APPOINTMENT_ENTITY, result.appointment.id, AuditAction.RESERVE,
                after=result.appointment.model_dump(mode="json")
            )
        elif result.outcome == ReservationOutcome.ROLLED_BACK.value:
            self._audit(
                donor_context, SLOT_ENTITY, attempt.slot_id, AuditAction.ROLLBACK,
                after={"error_code": result.error_code, "transitions": result.transitions}
            )
        else:
            self._audit(
                donor_context, SLOT_ENTITY, attempt.slot_id, AuditAction.REJECT,
                after={"error_code": result.error_code}
            )
        return result

    def _audit(self, donor_context: DonorContext, entity: str, entity_id: str, action: AuditAction,
               before=None, after=None, user_id: Optional[str] = None) -> None:
        """Write an audit entry; a failed audit write never changes the outcome."""
        if self.audit_service is None:
            return
        try:
            self.audit_service.log_action(
                user_id=user_id or donor_context.donor_id,
                org_id=donor_context.org_id,
                entity=entity,
                entity_id=entity_id,
                action=action.value,
                before=before,
                after=after,
                donor_context=donor_context
            )
        except Exception as e:
            logger.warning(
                "Audit log write failed",
                extra={"entity": entity, "entity_id": entity_id, "action": action.value, "error": str(e)}
            )

    # Release

    def release(self, donor_context: DonorContext, appointment_id: str) -> ReleaseResult:
        """
        Cancel the donor's appointment and free its spot on the slot.

        Safe to call again: an already cancelled appointment whose spot is
        still held gets its spot freed, and one whose spot is already free
        is reported as ALREADY_CANCELLED.

        Raises:
            UnknownAppointmentException: The appointment does not exist
            AuthorizationException: The appointment belongs to another donor
        """
        donor_context = self._require_context(donor_context)
        if not appointment_id:
            raise ValidationException(
                "appointment_id is required",
                [{"field": "appointment_id", "message": "Field required"}]
            )
        org_id = donor_context.org_id

        with tracer.start_as_current_span("reservation.release") as span:
            span.set_attributes({
                "donor.id": donor_context.donor_id,
                "appointment.id": appointment_id
            })

            appointment = self.appointment_store.get(org_id, appointment_id)
            if appointment is None:
                raise UnknownAppointmentException(appointment_id)
            if appointment.donor_id != donor_context.donor_id:
                raise AuthorizationException("You can only cancel your own appointments")

            cancelled_now = False
            if appointment.is_scheduled():
                cancelled_now = self.appointment_store.transition_status(
                    org_id,
                    appointment_id,
                    AppointmentStatus.SCHEDULED,
                    AppointmentStatus.CANCELLED,
                    donor_context.donor_id
                )

            try:
                outcome, attempts = self._release_hold(org_id, appointment.slot_id, appointment_id, donor_context.donor_id)
            except PersistenceException as e:
                span.record_exception(e)
                logger.error(
                    "Slot release failed after cancellation; reconcile_slot will free the spot",
                    extra={"appointment_id": appointment_id, "slot_id": appointment.slot_id, "error": str(e)}
                )
                return ReleaseResult(
                    appointment_id=appointment_id,
                    cancelled=True,
                    capacity_released=False,
                    error_code=ReservationErrorCode.PERSISTENCE_ERROR.value,
                    error_message=slot_message(ReservationErrorCode.PERSISTENCE_ERROR),
                    appointment=self.appointment_store.get(org_id, appointment_id)
                )

            span.set_attributes({"release.outcome": outcome, "release.attempts": attempts})

            if outcome == HOLD_CONFLICT:
                if cancelled_now:
                    self._revert_cancellation(donor_context, appointment_id)
                refreshed = self.appointment_store.get(org_id, appointment_id)
                return ReleaseResult(
                    appointment_id=appointment_id,
                    cancelled=refreshed is not None and not refreshed.is_scheduled(),
                    capacity_released=False,
                    attempts=attempts,
                    error_code=ReservationErrorCode.RELEASE_CONFLICT.value,
                    error_message="The slot is busy right now. Please try cancelling again.",
                    appointment=refreshed
                )

            released = outcome == HOLD_RELEASED
            result = ReleaseResult(
                appointment_id=appointment_id,
                cancelled=True,
                capacity_released=released,
                attempts=attempts,
                appointment=self.appointment_store.get(org_id, appointment_id)
            )
            if not cancelled_now and not released:
                result.error_code = ReservationErrorCode.ALREADY_CANCELLED.value
                result.error_message = "This appointment was already cancelled."

            if cancelled_now or released:
                self._audit(
                    donor_context, APPOINTMENT_ENTITY, appointment_id, AuditAction.CANCEL,
                    before={"status": appointment.status},
                    after={"status": AppointmentStatus.CANCELLED.value, "capacity_released": released}
                )

            logger.info(
                "Appointment released",
                extra={
                    "appointment_id": appointment_id,
                    "slot_id": appointment.slot_id,
                    "cancelled_now": cancelled_now,
                    "capacity_released": released,
                    "attempts": attempts
                }
            )
            return result

    def _release_hold(self, org_id: str, slot_id: str, appointment_id: str, actor_id: str) -> Tuple[str, int]:
        """
        Remove one appointment's hold from a slot, retrying lost races.

        Returns:
            (outcome, attempts) where outcome is HOLD_RELEASED, HOLD_NOT_HELD or HOLD_CONFLICT
        """
        attempts = 0
        timed_out = False
        while attempts < self.release_max_attempts:
            slot = self.slot_store.get(org_id, slot_id)
            if slot is None or not slot.holds(appointment_id):
                return (HOLD_RELEASED if timed_out else HOLD_NOT_HELD), attempts

            attempts += 1
            try:
                applied = self.slot_store.compare_and_swap(
                    org_id,
                    slot_id,
                    expected_bookings=slot.current_bookings,
                    expected_version=slot.version,
                    new_bookings=slot.current_bookings - 1,
                    appointment_id=appointment_id,
                    actor_id=actor_id
                )
            except StoreTimeoutException:
                # Unknown outcome; the next read tells whether the hold is gone
                timed_out = True
                continue

            if applied:
                return HOLD_RELEASED, attempts

            logger.info(
                "Slot release lost a race; retrying",
                extra={"slot_id": slot_id, "appointment_id": appointment_id, "attempt": attempts}
            )

        slot = self.slot_store.get(org_id, slot_id)
        if slot is None or not slot.holds(appointment_id):
            return (HOLD_RELEASED if timed_out else HOLD_NOT_HELD), attempts
        return HOLD_CONFLICT, attempts

    def _revert_cancellation(self, donor_context: DonorContext, appointment_id: str) -> None:
        try:
            reverted = self.appointment_store.transition_status(
                donor_context.org_id,
                appointment_id,
                AppointmentStatus.CANCELLED,
                AppointmentStatus.SCHEDULED,
                donor_context.donor_id
            )
        except PersistenceException as e:
            reverted = False
            logger.error("Reverting cancellation failed", extra={"appointment_id": appointment_id, "error": str(e)})

        if not reverted:
            logger.critical(
                "Appointment cancelled but its slot spot is still held; reconcile_slot will free it",
                extra={"appointment_id": appointment_id}
            )

    # Repair

    def reconcile_slot(
        self,
        org_id: str,
        slot_id: str,
        grace_minutes: int = DEFAULT_RECONCILE_GRACE_MINUTES,
        actor_id: str = "system"
    ) -> ReconcileResult:
        """
        Repair a slot after failed compensations.

        Deletes SCHEDULED appointments that never got a spot and are older
        than the grace period, and frees spots held by appointments that no
        longer exist or are cancelled.
        """
        with tracer.start_as_current_span("reservation.reconcile_slot") as span:
            span.set_attributes({"organization.id": org_id, "slot.id": slot_id})

            slot: Optional[AvailabilitySlot] = self.slot_store.get(org_id, slot_id)
            if slot is None:
                raise UnknownSlotException(slot_id)

            result = ReconcileResult(slot_id=slot_id)
            cutoff = self.clock() - timedelta(minutes=grace_minutes)
            appointments = self.appointment_store.list_for_slot(org_id, slot_id)
            by_id = {appointment.id: appointment for appointment in appointments}

            for appointment in appointments:
                if appointment.is_scheduled() and not slot.holds(appointment.id) and appointment.created_at <= cutoff:
                    if self.appointment_store.delete(org_id, appointment.id):
                        result.orphans_deleted.append(appointment.id)

            for held_id in list(slot.appointment_ids):
                holder = by_id.get(held_id)
                if holder is not None and holder.is_scheduled():
                    continue
                outcome, _ = self._release_hold(org_id, slot_id, held_id, actor_id)
                if outcome == HOLD_RELEASED:
                    result.holds_released.append(held_id)

            span.set_attributes({
                "reconcile.orphans_deleted": len(result.orphans_deleted),
                "reconcile.holds_released": len(result.holds_released)
            })

            if result.changed:
                logger.warning(
                    "Slot reconciled",
                    extra={
                        "slot_id": slot_id,
                        "orphans_deleted": result.orphans_deleted,
                        "holds_released": result.holds_released
                    }
                )
                if self.audit_service is not None:
                    system_context = DonorContext(donor_id=actor_id, org_id=org_id)
                    self._audit(
                        system_context, SLOT_ENTITY, slot_id, AuditAction.RECONCILE,
                        after=result.to_dict()
                    )
            return result
