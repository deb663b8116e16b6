# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the MongoDB-backed stores.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock
from bson import ObjectId

from models.entities import Appointment
from models.enums import AppointmentStatus, DonationType
from services.stores import (
    APPOINTMENTS_COLLECTION,
    DONATION_HISTORY_COLLECTION,
    SLOTS_COLLECTION,
    AppointmentStore,
    CenterStore,
    DonorStore,
    SlotStore
)

ORG_ID = "org-avis-milano"
SLOT_ID = str(ObjectId())


@pytest.fixture
def mongo_service():
    return MagicMock()


def slot_document(**overrides):
    document = {
        "id": SLOT_ID,
        "organizationId": ORG_ID,
        "centerId": "center-niguarda",
        "slotDatetime": datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc),
        "donationType": "Blood",
        "capacity": 5,
        "currentBookings": 2,
        "appointmentIds": ["a1", "a2"],
        "version": 4
    }
    document.update(overrides)
    return document


class TestSlotStore:

    def test_get_maps_camel_case_document(self, mongo_service):
        mongo_service.find_one_by_org.return_value = slot_document()

        slot = SlotStore(mongo_service).get(ORG_ID, SLOT_ID)

        mongo_service.find_one_by_org.assert_called_once_with(SLOTS_COLLECTION, ORG_ID, SLOT_ID)
        assert slot.id == SLOT_ID
        assert slot.donation_type == DonationType.WHOLE_BLOOD.value
        assert slot.current_bookings == 2
        assert slot.holds("a2")

    def test_get_missing(self, mongo_service):
        mongo_service.find_one_by_org.return_value = None

        assert SlotStore(mongo_service).get(ORG_ID, SLOT_ID) is None

    def test_list_for_center_matches_legacy_spellings(self, mongo_service):
        mongo_service.find_by_org.return_value = [slot_document()]
        after = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

        slots = SlotStore(mongo_service).list_for_center(ORG_ID, "center-niguarda", DonationType.PLASMA, after)

        collection, org_id, filters = mongo_service.find_by_org.call_args[0]
        assert collection == SLOTS_COLLECTION
        assert org_id == ORG_ID
        assert filters["donationType"] == {"$in": ["plasma", "Plasma"]}
        assert filters["slotDatetime"] == {"$gt": after}
        assert len(slots) == 1

    def test_take_spot_pushes_holder(self, mongo_service):
        mongo_service.conditional_update_by_org.return_value = True

        applied = SlotStore(mongo_service).compare_and_swap(
            ORG_ID, SLOT_ID, expected_bookings=2, expected_version=4,
            new_bookings=3, appointment_id="a3", actor_id="donor-1"
        )

        assert applied is True
        collection, org_id, slot_id, expected, update, actor = mongo_service.conditional_update_by_org.call_args[0]
        assert expected == {"currentBookings": 2, "version": 4}
        assert update["$set"] == {"currentBookings": 3}
        assert update["$inc"] == {"version": 1}
        assert update["$push"] == {"appointmentIds": "a3"}
        assert actor == "donor-1"

    def test_release_requires_holder(self, mongo_service):
        mongo_service.conditional_update_by_org.return_value = False

        applied = SlotStore(mongo_service).compare_and_swap(
            ORG_ID, SLOT_ID, expected_bookings=2, expected_version=4,
            new_bookings=1, appointment_id="a2", actor_id="donor-1"
        )

        assert applied is False
        expected, update = mongo_service.conditional_update_by_org.call_args[0][3:5]
        assert expected == {"currentBookings": 2, "version": 4, "appointmentIds": "a2"}
        assert update["$pull"] == {"appointmentIds": "a2"}

    def test_rejects_multi_spot_change(self, mongo_service):
        with pytest.raises(ValueError):
            SlotStore(mongo_service).compare_and_swap(
                ORG_ID, SLOT_ID, expected_bookings=1, expected_version=0,
                new_bookings=3, appointment_id="a1", actor_id="donor-1"
            )
        mongo_service.conditional_update_by_org.assert_not_called()


class TestAppointmentStore:

    def _appointment(self):
        return Appointment(
            organization_id=ORG_ID,
            donor_id="donor-1",
            slot_id=SLOT_ID,
            center_id="center-niguarda",
            appointment_datetime=datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc),
            donation_type="whole_blood"
        )

    def test_insert_uses_pregenerated_id(self, mongo_service):
        appointment = self._appointment()

        AppointmentStore(mongo_service).insert(appointment)

        collection, document, user_id = mongo_service.create.call_args[0]
        assert collection == APPOINTMENTS_COLLECTION
        assert document["_id"] == ObjectId(appointment.id)
        assert document["slotId"] == SLOT_ID
        assert document["status"] == AppointmentStatus.SCHEDULED.value
        assert user_id == "donor-1"

    def test_cancel_transition_is_conditional(self, mongo_service):
        mongo_service.conditional_update_by_org.return_value = True

        changed = AppointmentStore(mongo_service).transition_status(
            ORG_ID, "appt-1", AppointmentStatus.SCHEDULED, AppointmentStatus.CANCELLED, "donor-1"
        )

        assert changed is True
        expected, update = mongo_service.conditional_update_by_org.call_args[0][3:5]
        assert expected == {"status": "SCHEDULED"}
        assert update["$set"]["status"] == "CANCELLED"
        assert update["$set"]["cancelledAt"] is not None

    def test_list_for_donor_filters(self, mongo_service):
        mongo_service.find_by_org.return_value = []

        AppointmentStore(mongo_service).list_for_donor(
            ORG_ID, "donor-1", donation_type=DonationType.WHOLE_BLOOD, status=AppointmentStatus.SCHEDULED
        )

        filters = mongo_service.find_by_org.call_args[0][2]
        assert filters == {
            "donorId": "donor-1",
            "donationType": {"$in": ["whole_blood", "Blood"]},
            "status": "SCHEDULED"
        }


class TestDonorStore:

    def test_summary_counts_year_and_finds_last(self, mongo_service):
        mongo_service.find_by_org.return_value = [
            {"id": str(ObjectId()), "organizationId": ORG_ID, "donorId": "donor-1",
             "donationType": "Blood", "donationDate": datetime(2025, 1, 20, 9, 0, tzinfo=timezone.utc)},
            {"id": str(ObjectId()), "organizationId": ORG_ID, "donorId": "donor-1",
             "donationType": "whole_blood", "donationDate": datetime(2024, 9, 1, 9, 0, tzinfo=timezone.utc)}
        ]

        summary = DonorStore(mongo_service).get_donation_summary(ORG_ID, "donor-1", DonationType.WHOLE_BLOOD, 2025)

        assert mongo_service.find_by_org.call_args[0][0] == DONATION_HISTORY_COLLECTION
        assert summary.last_donation_date.isoformat() == "2025-01-20"
        assert summary.donations_completed == 1

    def test_summary_uses_booking_timezone_dates(self, mongo_service):
        # 00:30 on New Year's Day in Rome is still 31 December in UTC
        mongo_service.find_by_org.return_value = [
            {"id": str(ObjectId()), "organizationId": ORG_ID, "donorId": "donor-1",
             "donationType": "whole_blood", "donationDate": datetime(2024, 12, 31, 23, 30, tzinfo=timezone.utc)}
        ]

        summary = DonorStore(mongo_service, booking_timezone="Europe/Rome").get_donation_summary(
            ORG_ID, "donor-1", DonationType.WHOLE_BLOOD, 2025
        )

        assert summary.last_donation_date.isoformat() == "2025-01-01"
        assert summary.donations_completed == 1

    def test_summary_in_utc(self, mongo_service):
        mongo_service.find_by_org.return_value = [
            {"id": str(ObjectId()), "organizationId": ORG_ID, "donorId": "donor-1",
             "donationType": "whole_blood", "donationDate": datetime(2024, 12, 31, 23, 30, tzinfo=timezone.utc)}
        ]

        summary = DonorStore(mongo_service, booking_timezone="UTC").get_donation_summary(
            ORG_ID, "donor-1", DonationType.WHOLE_BLOOD, 2025
        )

        assert summary.last_donation_date.isoformat() == "2024-12-31"
        assert summary.donations_completed == 0

    def test_summary_without_history(self, mongo_service):
        mongo_service.find_by_org.return_value = []

        summary = DonorStore(mongo_service).get_donation_summary(ORG_ID, "donor-1", DonationType.PLASMA, 2025)

        assert summary.last_donation_date is None
        assert summary.donations_completed == 0


class TestCenterStore:

    def test_list_active(self, mongo_service):
        mongo_service.find_by_org.return_value = [
            {"id": "center-niguarda", "organizationId": ORG_ID, "name": "Ospedale Niguarda", "isActive": True}
        ]

        centers = CenterStore(mongo_service).list_active(ORG_ID)

        assert mongo_service.find_by_org.call_args[0][2] == {"isActive": True}
        assert [center.name for center in centers] == ["Ospedale Niguarda"]
