# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Storage collaborators for the booking engine.

Each store maps one MongoDB collection to entity models. All reads and
writes are scoped by organization through MongoDBService. Persistence
failures surface as PersistenceException, and writes whose outcome is
unknown as StoreTimeoutException.
"""

import logging
from datetime import date, datetime, tzinfo
from typing import Dict, List, Optional, Union

from bson import ObjectId
from opentelemetry import trace
from pymongo import ASCENDING, DESCENDING

from domain.availability import resolve_timezone
from models.base import ensure_utc, utc_now
from models.entities import (
    Appointment,
    AvailabilitySlot,
    DonationCenter,
    DonationRecord,
    DonationSummary
)
from models.enums import AppointmentStatus, DonationRecordStatus, DonationType
from services.mongodb import MongoDBService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CENTERS_COLLECTION = "donation_centers"
SLOTS_COLLECTION = "availability_slots"
APPOINTMENTS_COLLECTION = "appointments"
DONATION_HISTORY_COLLECTION = "donation_history"


def _stored_type_values(donation_type: DonationType) -> List[str]:
    """Stored spellings of a donation type, including legacy ones."""
    if donation_type == DonationType.PLASMA:
        return [DonationType.PLASMA.value, "Plasma"]
    return [DonationType.WHOLE_BLOOD.value, "Blood"]


class CenterStore:
    """Read access to donation centers."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def list_active(self, org_id: str) -> List[DonationCenter]:
        """Active centers of an organization, ordered by name."""
        documents = self.mongo_service.find_by_org(
            CENTERS_COLLECTION,
            org_id,
            {"isActive": True},
            sort=[("name", ASCENDING)]
        )
        return [DonationCenter.model_validate(doc) for doc in documents]


class SlotStore:
    """Slot reads and the conditional slot write."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def get(self, org_id: str, slot_id: str) -> Optional[AvailabilitySlot]:
        """Fresh read of a slot, or None if it does not exist."""
        with tracer.start_as_current_span("slot_store.get") as span:
            span.set_attributes({"slot.id": slot_id, "organization.id": org_id})
            document = self.mongo_service.find_one_by_org(SLOTS_COLLECTION, org_id, slot_id)
            if document is None:
                return None
            return AvailabilitySlot.model_validate(document)

    def list_for_center(
        self,
        org_id: str,
        center_id: str,
        donation_type: DonationType,
        starts_after: datetime
    ) -> List[AvailabilitySlot]:
        """Slots of a center and donation type starting after an instant, ordered by start."""
        with tracer.start_as_current_span("slot_store.list_for_center") as span:
            span.set_attributes({
                "center.id": center_id,
                "donation.type": donation_type.value,
                "organization.id": org_id
            })
            documents = self.mongo_service.find_by_org(
                SLOTS_COLLECTION,
                org_id,
                {
                    "centerId": center_id,
                    "donationType": {"$in": _stored_type_values(donation_type)},
                    "slotDatetime": {"$gt": starts_after}
                },
                sort=[("slotDatetime", ASCENDING)]
            )
            span.set_attribute("slots.count", len(documents))
            return [AvailabilitySlot.model_validate(doc) for doc in documents]

    def compare_and_swap(
        self,
        org_id: str,
        slot_id: str,
        expected_bookings: int,
        expected_version: int,
        new_bookings: int,
        appointment_id: str,
        actor_id: str
    ) -> bool:
        """
        Move a slot's booking count from an expected value to a new one.

        The write applies only if the stored bookings and version still equal
        the values the caller read. Incrementing adds the appointment to the
        slot's holders; decrementing removes it and also requires it to be a
        current holder.

        Returns:
            True if the write was applied, False if another writer got there first

        Raises:
            StoreTimeoutException: The outcome is unknown
            PersistenceException: The write failed
        """
        if new_bookings not in (expected_bookings + 1, expected_bookings - 1):
            raise ValueError("Bookings can only change by one spot per write")

        expected: Dict = {"currentBookings": expected_bookings, "version": expected_version}
        if new_bookings > expected_bookings:
            update = {
                "$set": {"currentBookings": new_bookings},
                "$inc": {"version": 1},
                "$push": {"appointmentIds": appointment_id}
            }
        else:
            expected["appointmentIds"] = appointment_id
            update = {
                "$set": {"currentBookings": new_bookings},
                "$inc": {"version": 1},
                "$pull": {"appointmentIds": appointment_id}
            }

        with tracer.start_as_current_span("slot_store.compare_and_swap") as span:
            span.set_attributes({
                "slot.id": slot_id,
                "slot.expected_bookings": expected_bookings,
                "slot.expected_version": expected_version,
                "slot.new_bookings": new_bookings
            })
            applied = self.mongo_service.conditional_update_by_org(
                SLOTS_COLLECTION, org_id, slot_id, expected, update, actor_id
            )
            span.set_attribute("slot.cas_applied", applied)
            return applied


class AppointmentStore:
    """Appointment persistence."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service

    def insert(self, appointment: Appointment) -> Appointment:
        """Insert an appointment under its pre-generated id."""
        with tracer.start_as_current_span("appointment_store.insert") as span:
            span.set_attributes({"appointment.id": appointment.id, "slot.id": appointment.slot_id})
            document = appointment.to_document()
            document["_id"] = ObjectId(appointment.id)
            self.mongo_service.create(APPOINTMENTS_COLLECTION, document, appointment.donor_id)
            return appointment

    def get(self, org_id: str, appointment_id: str) -> Optional[Appointment]:
        """Read an appointment, or None if it does not exist."""
        document = self.mongo_service.find_one_by_org(APPOINTMENTS_COLLECTION, org_id, appointment_id)
        if document is None:
            return None
        return Appointment.model_validate(document)

    def delete(self, org_id: str, appointment_id: str) -> bool:
        """Remove an appointment; returns False if it was already gone."""
        with tracer.start_as_current_span("appointment_store.delete") as span:
            span.set_attribute("appointment.id", appointment_id)
            return self.mongo_service.hard_delete_by_org(APPOINTMENTS_COLLECTION, org_id, appointment_id)

    def list_for_donor(
        self,
        org_id: str,
        donor_id: str,
        donation_type: Optional[DonationType] = None,
        status: Optional[AppointmentStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Appointment]:
        """Appointments of a donor, optionally filtered by type, status and date range."""
        filters: Dict = {"donorId": donor_id}
        if donation_type is not None:
            filters["donationType"] = {"$in": _stored_type_values(donation_type)}
        if status is not None:
            filters["status"] = status.value
        if start is not None or end is not None:
            window = {}
            if start is not None:
                window["$gte"] = start
            if end is not None:
                window["$lt"] = end
            filters["appointmentDatetime"] = window

        documents = self.mongo_service.find_by_org(
            APPOINTMENTS_COLLECTION,
            org_id,
            filters,
            sort=[("appointmentDatetime", ASCENDING)]
        )
        return [Appointment.model_validate(doc) for doc in documents]

    def list_for_slot(self, org_id: str, slot_id: str) -> List[Appointment]:
        """All appointments pointing at a slot."""
        documents = self.mongo_service.find_by_org(
            APPOINTMENTS_COLLECTION,
            org_id,
            {"slotId": slot_id},
            sort=[("createdAt", ASCENDING)]
        )
        return [Appointment.model_validate(doc) for doc in documents]

    def transition_status(
        self,
        org_id: str,
        appointment_id: str,
        expected_status: AppointmentStatus,
        new_status: AppointmentStatus,
        actor_id: str
    ) -> bool:
        """Change status only if the stored status is still the expected one."""
        changes: Dict = {"status": new_status.value}
        if new_status == AppointmentStatus.CANCELLED:
            changes["cancelledAt"] = utc_now()
        else:
            changes["cancelledAt"] = None

        return self.mongo_service.conditional_update_by_org(
            APPOINTMENTS_COLLECTION,
            org_id,
            appointment_id,
            {"status": expected_status.value},
            {"$set": changes},
            actor_id
        )


class DonorStore:
    """Read access to the donor's completed donation history."""

    def __init__(self, mongo_service: MongoDBService, booking_timezone: Union[str, tzinfo, None] = None):
        self.mongo_service = mongo_service
        if isinstance(booking_timezone, tzinfo):
            self.tz = booking_timezone
        else:
            self.tz = resolve_timezone(booking_timezone)

    def _local_date(self, value: datetime) -> date:
        return ensure_utc(value).astimezone(self.tz).date()

    def get_donation_summary(
        self,
        org_id: str,
        donor_id: str,
        donation_type: DonationType,
        year: int
    ) -> DonationSummary:
        """
        Summarise completed donations of one type.

        Returns the date of the most recent completed donation (any year) and
        the number of completed donations in the given calendar year. Both
        are calendar dates in the booking timezone, like proposed dates.
        """
        with tracer.start_as_current_span("donor_store.get_donation_summary") as span:
            span.set_attributes({
                "donor.id": donor_id,
                "donation.type": donation_type.value,
                "donation.year": year
            })
            documents = self.mongo_service.find_by_org(
                DONATION_HISTORY_COLLECTION,
                org_id,
                {
                    "donorId": donor_id,
                    "donationType": {"$in": _stored_type_values(donation_type)},
                    "status": DonationRecordStatus.COMPLETED.value
                },
                sort=[("donationDate", DESCENDING)]
            )
            records = [DonationRecord.model_validate(doc) for doc in documents]

            if not records:
                return DonationSummary()

            local_dates = [self._local_date(record.donation_date) for record in records]
            completed_in_year = sum(1 for day in local_dates if day.year == year)
            last: date = max(local_dates)
            span.set_attribute("donations.completed_in_year", completed_in_year)
            return DonationSummary(last_donation_date=last, donations_completed=completed_in_year)
