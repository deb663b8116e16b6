# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for reservations through the coordinator.
"""

import pytest
from datetime import datetime, timedelta, timezone

from conftest import CENTER_ID, NOW, ORG_ID
from middleware.error_handler import (
    PersistenceException,
    StoreTimeoutException,
    UnknownSlotException,
    ValidationException
)
from models.entities import Appointment
from models.enums import (
    AppointmentStatus,
    DonationType,
    ErrorKind,
    ReservationErrorCode,
    ReservationOutcome
)


class TestSuccessfulReservation:
    """Test the happy path."""

    def test_first_time_donor_confirmed(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(capacity=5, current_bookings=2))

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.CONFIRMED.value
        assert result.confirmed is True
        assert result.error_code is None
        assert result.transitions == ["PENDING", "ELIGIBILITY_CHECKED", "SLOT_RESERVED", "CONFIRMED"]

        stored_slot = booking.slots.current(slot.id)
        assert stored_slot.current_bookings == 3
        assert stored_slot.version == slot.version + 1
        assert result.appointment.id in stored_slot.appointment_ids

        stored = booking.appointments.get(ORG_ID, result.appointment.id)
        assert stored.status == AppointmentStatus.SCHEDULED.value
        assert stored.donor_id == donor_context.donor_id
        assert stored.center_id == CENTER_ID
        assert stored.appointment_datetime == slot.slot_datetime
        assert stored.booking_channel == "online"

    def test_legacy_donation_type_spelling(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(donation_type="Plasma"))

        result = booking.coordinator.reserve(donor_context, slot.id, "plasma")

        assert result.confirmed
        assert result.appointment.donation_type == DonationType.PLASMA.value

    def test_audit_entry_written(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert booking.audit.actions() == ["reserve"]
        entry = booking.audit.entries[0]
        assert entry["entity"] == "appointment"
        assert entry["entity_id"] == result.appointment.id
        assert entry["org_id"] == ORG_ID

    def test_audit_failure_does_not_change_outcome(self, booking, make_slot, donor_context):
        booking.audit.fail = True
        slot = booking.slots.add(make_slot())

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.confirmed
        assert booking.slots.current(slot.id).current_bookings == 1


class TestRejectedReservation:
    """Test rejections that persist nothing."""

    def test_full_slot_rejected_with_capacity_conflict(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(capacity=5, current_bookings=5))

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.REJECTED.value
        assert result.error_code == ReservationErrorCode.SLOT_FULL.value
        assert result.error_kind == ErrorKind.CAPACITY_CONFLICT.value
        assert result.retryable is True
        assert "another time" in result.error_message
        assert booking.appointments.appointments == {}
        assert booking.slots.current(slot.id).current_bookings == 5
        assert booking.slots.cas_calls == 0

    def test_slot_inside_lead_time(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(slot_datetime=NOW + timedelta(minutes=20)))

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.error_code == ReservationErrorCode.SLOT_TOO_SOON.value
        assert "60 minutes" in result.error_message
        assert result.transitions == ["PENDING", "REJECTED"]

    def test_disabled_slot(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(is_available=False))

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.error_code == ReservationErrorCode.SLOT_UNAVAILABLE.value

    def test_interval_violation(self, booking, make_slot, donor_context):
        booking.donors.add_donation(donor_context.donor_id, "whole_blood", NOW - timedelta(days=30))
        slot = booking.slots.add(make_slot())

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.REJECTED.value
        assert result.error_kind == ErrorKind.ELIGIBILITY.value
        assert result.error_code == "INSUFFICIENT_INTERVAL"
        assert result.retryable is False
        assert result.eligibility.days_remaining == 59
        assert booking.appointments.appointments == {}
        assert booking.audit.actions() == ["reject"]

    def test_existing_scheduled_appointment_counts_as_last_donation(self, booking, make_slot, donor_context):
        first = booking.slots.add(make_slot(slot_datetime=NOW + timedelta(days=1)))
        second = booking.slots.add(make_slot(slot_datetime=NOW + timedelta(days=20)))

        assert booking.coordinator.reserve(donor_context, first.id, "whole_blood").confirmed
        result = booking.coordinator.reserve(donor_context, second.id, "whole_blood")

        assert result.error_code == "INSUFFICIENT_INTERVAL"
        assert result.eligibility.days_since_last_donation == 19

    def test_annual_cap_counts_completed_and_scheduled(self, booking, make_slot, donor_context):
        for month in (1, 4, 7):
            booking.donors.add_donation(
                donor_context.donor_id, "whole_blood", datetime(2025, month, 2, 9, tzinfo=timezone.utc)
            )
        booking.clock.advance(days=180)
        october = booking.slots.add(make_slot(slot_datetime=datetime(2025, 10, 10, 8, tzinfo=timezone.utc)))
        december = booking.slots.add(make_slot(slot_datetime=datetime(2025, 12, 30, 8, tzinfo=timezone.utc)))

        assert booking.coordinator.reserve(donor_context, october.id, "whole_blood").confirmed
        result = booking.coordinator.reserve(donor_context, december.id, "whole_blood")

        assert result.error_code == "MAX_DONATIONS_REACHED"
        assert result.eligibility.next_eligible_year == 2026

    def test_plasma_interval(self, booking, make_slot, donor_context):
        booking.donors.add_donation(donor_context.donor_id, "Plasma", NOW - timedelta(days=5))
        slot = booking.slots.add(make_slot(donation_type="plasma"))

        result = booking.coordinator.reserve(donor_context, slot.id, "plasma")

        assert result.error_code == "INSUFFICIENT_INTERVAL_PLASMA"

    def test_whole_blood_history_does_not_block_plasma(self, booking, make_slot, donor_context):
        booking.donors.add_donation(donor_context.donor_id, "whole_blood", NOW - timedelta(days=5))
        slot = booking.slots.add(make_slot(donation_type="plasma"))

        assert booking.coordinator.reserve(donor_context, slot.id, "plasma").confirmed


class TestInvalidInput:
    """Test input validation."""

    def test_missing_donor_context(self, booking, make_slot):
        slot = booking.slots.add(make_slot())

        with pytest.raises(ValidationException):
            booking.coordinator.reserve(None, slot.id, "whole_blood")

    def test_missing_slot_id(self, booking, donor_context):
        with pytest.raises(ValidationException):
            booking.coordinator.reserve(donor_context, "  ", "whole_blood")

    def test_unknown_slot(self, booking, donor_context):
        with pytest.raises(UnknownSlotException) as exc_info:
            booking.coordinator.reserve(donor_context, "65f0c0ffee0000000000beef", "whole_blood")

        assert exc_info.value.error_code == "SLOT_NOT_FOUND"

    def test_slot_of_other_organization_is_unknown(self, booking, make_slot, make_context):
        slot = booking.slots.add(make_slot())

        with pytest.raises(UnknownSlotException):
            booking.coordinator.reserve(make_context(org_id="org-other"), slot.id, "whole_blood")

    def test_donation_type_mismatch(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(donation_type="plasma"))

        with pytest.raises(ValidationException):
            booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

    def test_unknown_donation_type(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())

        with pytest.raises(ValidationException):
            booking.coordinator.reserve(donor_context, slot.id, "platelets")


class TestRaceAndCompensation:
    """Test conflicts detected after the tentative appointment was written."""

    def test_slot_filled_between_reads(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(capacity=1, current_bookings=0))
        original_get = booking.slots.get
        reads = []

        def get_and_fill(org_id, slot_id):
            reads.append(slot_id)
            if len(reads) == 2:
                booking.slots.take_spot_elsewhere(slot_id)
            return original_get(org_id, slot_id)

        booking.slots.get = get_and_fill

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.ROLLED_BACK.value
        assert result.error_code == ReservationErrorCode.SLOT_FULL.value
        assert result.retryable is True
        assert result.transitions == ["PENDING", "ELIGIBILITY_CHECKED", "SLOT_RESERVED", "ROLLED_BACK"]
        assert booking.appointments.appointments == {}
        assert booking.slots.current(slot.id).current_bookings == 1

    def test_lost_compare_and_swap(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(capacity=3))
        booking.slots.before_cas = booking.slots.take_spot_elsewhere

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.ROLLED_BACK.value
        assert result.error_code == ReservationErrorCode.SLOT_TAKEN.value
        assert result.error_kind == ErrorKind.CAPACITY_CONFLICT.value
        assert "someone else" in result.error_message
        assert booking.appointments.appointments == {}
        stored = booking.slots.current(slot.id)
        assert stored.current_bookings == 1
        assert len(stored.appointment_ids) == 1
        assert booking.audit.actions() == ["rollback"]

    def test_failed_compensation_leaves_orphan_but_reports_rollback(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot(capacity=3))
        booking.slots.before_cas = booking.slots.take_spot_elsewhere
        booking.appointments.delete_error = PersistenceException("primary stepped down", "delete")

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.ROLLED_BACK.value
        assert result.error_code == ReservationErrorCode.SLOT_TAKEN.value
        assert len(booking.appointments.scheduled_for_slot(slot.id)) == 1


class TestPersistenceFailures:
    """Test storage failures at each step."""

    def test_failure_before_any_write_propagates(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.slots.get_error = PersistenceException("connection refused", "find_one")

        with pytest.raises(PersistenceException):
            booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert booking.appointments.appointments == {}

    def test_insert_failure_rolls_back(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.appointments.insert_error = PersistenceException("write failed", "create")

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.ROLLED_BACK.value
        assert result.error_code == ReservationErrorCode.PERSISTENCE_ERROR.value
        assert result.error_kind == ErrorKind.PERSISTENCE.value
        assert result.retryable is True
        assert booking.slots.current(slot.id).current_bookings == 0

    def test_slot_write_failure_compensates(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.slots.cas_error = PersistenceException("write failed", "update")

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.error_code == ReservationErrorCode.PERSISTENCE_ERROR.value
        assert booking.appointments.appointments == {}
        assert booking.slots.current(slot.id).current_bookings == 0

    def test_timed_out_write_that_applied_is_confirmed(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.slots.cas_error = StoreTimeoutException("socket timeout", "update")
        booking.slots.cas_error_after_apply = True

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.confirmed
        assert booking.slots.current(slot.id).holds(result.appointment.id)
        assert booking.appointments.get(ORG_ID, result.appointment.id) is not None

    def test_timed_out_write_that_did_not_apply_is_compensated(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.slots.cas_error = StoreTimeoutException("socket timeout", "update")

        result = booking.coordinator.reserve(donor_context, slot.id, "whole_blood")

        assert result.outcome == ReservationOutcome.ROLLED_BACK.value
        assert result.error_code == ReservationErrorCode.PERSISTENCE_ERROR.value
        assert booking.appointments.appointments == {}
        assert booking.slots.current(slot.id).current_bookings == 0


class TestReadOperations:
    """Test eligibility pre-flight and listings."""

    def test_check_eligibility(self, booking, donor_context):
        booking.donors.add_donation(donor_context.donor_id, "whole_blood", datetime(2024, 1, 1, 9, tzinfo=timezone.utc))

        result = booking.coordinator.check_eligibility(donor_context, datetime(2024, 3, 1).date(), "whole_blood")

        assert result.is_eligible is False
        assert result.days_remaining == 30

    def test_check_eligibility_requires_date(self, booking, donor_context):
        with pytest.raises(ValidationException):
            booking.coordinator.check_eligibility(donor_context, None, "whole_blood")

    def test_list_availability_never_returns_full_slots(self, booking, make_slot, donor_context):
        booking.slots.add(make_slot(capacity=5, current_bookings=5))
        open_slot = booking.slots.add(make_slot(capacity=5, current_bookings=4))

        days = booking.coordinator.list_availability(donor_context, CENTER_ID, "whole_blood")

        views = [view for day in days for view in day.slots]
        assert [view.slot_id for view in views] == [open_slot.id]
        assert all(view.spots_left > 0 for view in views)

    def test_list_availability_accepts_org_id(self, booking, make_slot):
        booking.slots.add(make_slot())

        days = booking.coordinator.list_availability(ORG_ID, CENTER_ID, "Blood")

        assert len(days) == 1

    def test_list_availability_requires_center(self, booking, donor_context):
        with pytest.raises(ValidationException):
            booking.coordinator.list_availability(donor_context, "", "whole_blood")

    def test_list_appointments_hides_cancelled_by_default(self, booking, make_slot, donor_context):
        slot = booking.slots.add(make_slot())
        booking.appointments.add(Appointment(
            organization_id=ORG_ID,
            donor_id=donor_context.donor_id,
            slot_id=slot.id,
            center_id=CENTER_ID,
            appointment_datetime=slot.slot_datetime,
            donation_type="whole_blood",
            status=AppointmentStatus.CANCELLED,
            cancelled_at=NOW
        ))
        kept = booking.coordinator.reserve(donor_context, slot.id, "whole_blood").appointment

        scheduled = booking.coordinator.list_appointments(donor_context)
        everything = booking.coordinator.list_appointments(donor_context, include_cancelled=True)

        assert [appointment.id for appointment in scheduled] == [kept.id]
        assert len(everything) == 2

    def test_list_centers(self, booking, donor_context):
        centers = booking.coordinator.list_centers(donor_context)

        assert [center.id for center in centers] == [CENTER_ID]
