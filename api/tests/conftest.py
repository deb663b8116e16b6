# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.

The booking engine is exercised against in-memory stores that apply the
same conditional-write rules as the MongoDB stores, so races and partial
failures can be staged deterministically.
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import jwt
import pytest
from bson import ObjectId

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['MONGODB_DATABASE'] = 'donor_booking_test'

from models.base import utc_now
from models.entities import (
    Appointment,
    AvailabilitySlot,
    DonationCenter,
    DonationRecord,
    DonationSummary,
    DonorContext
)
from models.enums import AppointmentStatus, DonationType
from services.auth import AuthService, generate_key_pair
from services.reservations import ReservationCoordinator
from services.slot_catalog import SlotCatalog

NOW = datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc)
ORG_ID = "org-avis-milano"
CENTER_ID = "center-niguarda"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemorySlotStore:
    """Slot store whose compare_and_swap behaves like the MongoDB filter."""

    def __init__(self):
        self.slots: Dict[str, AvailabilitySlot] = {}
        self.lock = threading.Lock()
        self.cas_calls = 0
        self.get_error: Optional[Exception] = None
        self.cas_error: Optional[Exception] = None
        self.cas_error_after_apply = False
        self.before_cas: Optional[Callable[[str], None]] = None

    def add(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        self.slots[slot.id] = slot.model_copy(deep=True)
        return slot

    def current(self, slot_id: str) -> AvailabilitySlot:
        return self.slots[slot_id]

    def take_spot_elsewhere(self, slot_id: str) -> str:
        """Simulate another writer booking a spot on the slot."""
        with self.lock:
            slot = self.slots[slot_id]
            other_id = str(ObjectId())
            self.slots[slot_id] = slot.model_copy(update={
                "current_bookings": slot.current_bookings + 1,
                "appointment_ids": slot.appointment_ids + [other_id],
                "version": slot.version + 1
            })
            return other_id

    def get(self, org_id: str, slot_id: str) -> Optional[AvailabilitySlot]:
        if self.get_error is not None:
            raise self.get_error
        with self.lock:
            slot = self.slots.get(slot_id)
            if slot is None or slot.organization_id != org_id:
                return None
            return slot.model_copy(deep=True)

    def list_for_center(self, org_id, center_id, donation_type, starts_after) -> List[AvailabilitySlot]:
        with self.lock:
            found = [
                slot.model_copy(deep=True) for slot in self.slots.values()
                if slot.organization_id == org_id
                and slot.center_id == center_id
                and DonationType.parse(slot.donation_type) == donation_type
                and slot.slot_datetime > starts_after
            ]
        return sorted(found, key=lambda slot: slot.slot_datetime)

    def compare_and_swap(self, org_id, slot_id, expected_bookings, expected_version,
                         new_bookings, appointment_id, actor_id) -> bool:
        if new_bookings not in (expected_bookings + 1, expected_bookings - 1):
            raise ValueError("Bookings can only change by one spot per write")
        if self.before_cas is not None:
            hook, self.before_cas = self.before_cas, None
            hook(slot_id)

        with self.lock:
            self.cas_calls += 1
            error, self.cas_error = self.cas_error, None
            if error is not None and not self.cas_error_after_apply:
                raise error

            slot = self.slots.get(slot_id)
            applied = (
                slot is not None
                and slot.organization_id == org_id
                and slot.current_bookings == expected_bookings
                and slot.version == expected_version
                and (new_bookings > expected_bookings or appointment_id in slot.appointment_ids)
            )
            if applied:
                holders = list(slot.appointment_ids)
                if new_bookings > expected_bookings:
                    holders.append(appointment_id)
                else:
                    holders.remove(appointment_id)
                self.slots[slot_id] = slot.model_copy(update={
                    "current_bookings": new_bookings,
                    "appointment_ids": holders,
                    "version": slot.version + 1
                })

            if error is not None:
                raise error
            return applied


class InMemoryAppointmentStore:
    """Appointment store with injectable failures."""

    def __init__(self):
        self.appointments: Dict[str, Appointment] = {}
        self.lock = threading.Lock()
        self.insert_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None

    def add(self, appointment: Appointment) -> Appointment:
        self.appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment

    def insert(self, appointment: Appointment) -> Appointment:
        if self.insert_error is not None:
            raise self.insert_error
        with self.lock:
            self.appointments[appointment.id] = appointment.model_copy(deep=True)
        return appointment

    def get(self, org_id: str, appointment_id: str) -> Optional[Appointment]:
        with self.lock:
            appointment = self.appointments.get(appointment_id)
            if appointment is None or appointment.organization_id != org_id:
                return None
            return appointment.model_copy(deep=True)

    def delete(self, org_id: str, appointment_id: str) -> bool:
        if self.delete_error is not None:
            raise self.delete_error
        with self.lock:
            return self.appointments.pop(appointment_id, None) is not None

    def list_for_donor(self, org_id, donor_id, donation_type=None, status=None, start=None, end=None):
        with self.lock:
            found = [
                appointment.model_copy(deep=True) for appointment in self.appointments.values()
                if appointment.organization_id == org_id
                and appointment.donor_id == donor_id
                and (donation_type is None or DonationType.parse(appointment.donation_type) == donation_type)
                and (status is None or appointment.status == status.value)
                and (start is None or appointment.appointment_datetime >= start)
                and (end is None or appointment.appointment_datetime < end)
            ]
        return sorted(found, key=lambda appointment: appointment.appointment_datetime)

    def list_for_slot(self, org_id, slot_id):
        with self.lock:
            found = [
                appointment.model_copy(deep=True) for appointment in self.appointments.values()
                if appointment.organization_id == org_id and appointment.slot_id == slot_id
            ]
        return sorted(found, key=lambda appointment: appointment.created_at)

    def transition_status(self, org_id, appointment_id, expected_status, new_status, actor_id) -> bool:
        with self.lock:
            appointment = self.appointments.get(appointment_id)
            if appointment is None or appointment.organization_id != org_id:
                return False
            if appointment.status != expected_status.value:
                return False
            cancelled_at = utc_now() if new_status == AppointmentStatus.CANCELLED else None
            self.appointments[appointment_id] = appointment.model_copy(update={
                "status": new_status.value,
                "cancelled_at": cancelled_at,
                "updated_by": actor_id
            })
            return True

    def scheduled_for_slot(self, slot_id: str) -> List[Appointment]:
        return [
            appointment for appointment in self.appointments.values()
            if appointment.slot_id == slot_id and appointment.is_scheduled()
        ]


class InMemoryDonorStore:
    """Completed donation history."""

    def __init__(self):
        self.records: List[DonationRecord] = []

    def add_donation(self, donor_id: str, donation_type, donation_date: datetime, org_id: str = ORG_ID):
        self.records.append(DonationRecord(
            organization_id=org_id,
            donor_id=donor_id,
            donation_type=donation_type,
            donation_date=donation_date
        ))

    def get_donation_summary(self, org_id, donor_id, donation_type, year) -> DonationSummary:
        records = sorted(
            (
                record for record in self.records
                if record.organization_id == org_id
                and record.donor_id == donor_id
                and DonationType.parse(record.donation_type) == donation_type
            ),
            key=lambda record: record.donation_date,
            reverse=True
        )
        if not records:
            return DonationSummary()
        return DonationSummary(
            last_donation_date=records[0].donation_date.date(),
            donations_completed=sum(1 for record in records if record.donation_date.year == year)
        )


class InMemoryCenterStore:
    def __init__(self, centers=None):
        self.centers = list(centers or [])

    def list_active(self, org_id):
        return [center for center in self.centers if center.organization_id == org_id and center.is_active]


class RecordingAuditService:
    """Audit service double that records entries and can be made to fail."""

    def __init__(self):
        self.entries: List[Dict] = []
        self.fail = False

    def log_action(self, **kwargs) -> str:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.entries.append(kwargs)
        return str(ObjectId())

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.entries]


@pytest.fixture
def clock():
    """Frozen clock at Monday 3 March 2025, 09:00 Rome time."""
    return FrozenClock()


@pytest.fixture
def make_slot():
    """Factory for slots at the default center, one day after NOW."""
    def _make_slot(**overrides) -> AvailabilitySlot:
        data = {
            "organization_id": ORG_ID,
            "center_id": CENTER_ID,
            "slot_datetime": NOW + timedelta(days=1),
            "donation_type": DonationType.WHOLE_BLOOD,
            "capacity": 5,
            "current_bookings": 0
        }
        data.update(overrides)
        if "appointment_ids" not in overrides and data["current_bookings"]:
            data["appointment_ids"] = [str(ObjectId()) for _ in range(data["current_bookings"])]
        return AvailabilitySlot(**data)
    return _make_slot


@pytest.fixture
def make_context():
    """Factory for donor contexts."""
    def _make_context(donor_id: str = "donor-1", org_id: str = ORG_ID, permissions=None) -> DonorContext:
        return DonorContext(donor_id=donor_id, org_id=org_id, permissions=permissions or [])
    return _make_context


@pytest.fixture
def donor_context(make_context):
    return make_context()


@pytest.fixture
def booking(clock):
    """In-memory booking engine: stores, catalog, audit and coordinator."""
    slots = InMemorySlotStore()
    appointments = InMemoryAppointmentStore()
    donors = InMemoryDonorStore()
    centers = InMemoryCenterStore([
        DonationCenter(organization_id=ORG_ID, id=CENTER_ID, name="Ospedale Niguarda", city="Milano"),
        DonationCenter(organization_id=ORG_ID, name="Centro chiuso", is_active=False),
        DonationCenter(organization_id="org-other", name="Altro centro")
    ])
    audit = RecordingAuditService()
    catalog = SlotCatalog(slots, centers, min_lead_minutes=60, booking_timezone="Europe/Rome", clock=clock)
    coordinator = ReservationCoordinator(
        catalog,
        slots,
        appointments,
        donors,
        audit_service=audit,
        release_max_attempts=3,
        clock=clock
    )
    return SimpleNamespace(
        slots=slots,
        appointments=appointments,
        donors=donors,
        centers=centers,
        audit=audit,
        catalog=catalog,
        coordinator=coordinator,
        clock=clock
    )


@pytest.fixture(scope="session")
def jwt_keys():
    """RSA key pair shared by the endpoint tests."""
    return generate_key_pair()


@pytest.fixture
def issue_token(jwt_keys):
    """Sign access tokens the way the identity provider does."""
    private_key, _ = jwt_keys

    def _issue(donor_id: str = "donor-1", org_id: str = ORG_ID, permissions=None,
               expires_in: timedelta = timedelta(minutes=15), **extra) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": donor_id,
            "org_id": org_id,
            "permissions": permissions or [],
            "iat": now,
            "exp": now + expires_in,
            "type": "access"
        }
        payload.update(extra)
        return jwt.encode(payload, private_key, algorithm="RS256")
    return _issue


@pytest.fixture
def app(booking, jwt_keys):
    """Flask app wired to the in-memory booking engine."""
    from unittest.mock import MagicMock
    from app import create_app

    mongodb_service = MagicMock()
    mongodb_service.health_check.return_value = {
        "status": "healthy",
        "version": "7.0.0",
        "database": "donor_booking_test"
    }
    flask_app = create_app(
        config={"BASE_URL": "https://api.example.org", "TESTING": True},
        mongodb_service=mongodb_service,
        reservation_coordinator=booking.coordinator,
        auth_service=AuthService(public_key=jwt_keys[1]),
        instrument=False
    )
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(issue_token):
    def _headers(**kwargs) -> Dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(**kwargs)}"}
    return _headers
