# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Read model over the slot store.

The catalog answers which slots a donor may still pick and how contested
each one is. It never writes.
"""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Callable, List, Optional, Union

from opentelemetry import trace

from domain.availability import SlotView, classify_slot, resolve_timezone
from models.base import utc_now
from models.entities import AvailabilitySlot, DonationCenter
from models.enums import DonationType, ReservationErrorCode

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_MIN_LEAD_MINUTES = 60


class SlotCatalog:
    """Lists open slots and exposes fresh slot state."""

    def __init__(
        self,
        slot_store,
        center_store=None,
        min_lead_minutes: int = DEFAULT_MIN_LEAD_MINUTES,
        booking_timezone: Union[str, tzinfo, None] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.slot_store = slot_store
        self.center_store = center_store
        self.min_lead = timedelta(minutes=min_lead_minutes)
        if isinstance(booking_timezone, tzinfo):
            self.tz = booking_timezone
        else:
            self.tz = resolve_timezone(booking_timezone)
        self.clock = clock

    @property
    def min_lead_minutes(self) -> int:
        return int(self.min_lead.total_seconds() // 60)

    def booking_cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Earliest slot start that can still be booked."""
        return (now or self.clock()) + self.min_lead

    def list_open_slots(
        self,
        org_id: str,
        center_id: str,
        donation_type: Union[str, DonationType],
        now: Optional[datetime] = None
    ) -> List[AvailabilitySlot]:
        """
        Slots a donor may still pick, ordered by start.

        Past slots, slots inside the booking lead time, disabled slots and
        full slots are excluded.
        """
        dtype = DonationType.parse(donation_type)
        now = now or self.clock()

        with tracer.start_as_current_span("slot_catalog.list_open_slots") as span:
            span.set_attributes({
                "organization.id": org_id,
                "center.id": center_id,
                "donation.type": dtype.value
            })

            slots = self.slot_store.list_for_center(org_id, center_id, dtype, now)
            cutoff = self.booking_cutoff(now)
            open_slots = [
                slot for slot in slots
                if slot.is_available and not slot.is_full and slot.slot_datetime >= cutoff
            ]
            open_slots.sort(key=lambda slot: slot.slot_datetime)

            span.set_attributes({
                "slots.found": len(slots),
                "slots.open": len(open_slots)
            })
            logger.debug(
                "Listed open slots",
                extra={
                    "org_id": org_id,
                    "center_id": center_id,
                    "donation_type": dtype.value,
                    "slots_found": len(slots),
                    "slots_open": len(open_slots)
                }
            )
            return open_slots

    def get_slot(self, org_id: str, slot_id: str) -> Optional[AvailabilitySlot]:
        """Current state of a slot, read fresh from the store."""
        return self.slot_store.get(org_id, slot_id)

    def demand_state(self, slot: AvailabilitySlot) -> SlotView:
        """Demand classification of a slot."""
        return classify_slot(slot, self.tz)

    def unavailability_reason(
        self,
        slot: AvailabilitySlot,
        now: Optional[datetime] = None
    ) -> Optional[ReservationErrorCode]:
        """Why a slot cannot be booked right now, or None if it can."""
        if not slot.is_available:
            return ReservationErrorCode.SLOT_UNAVAILABLE
        if slot.slot_datetime < self.booking_cutoff(now):
            return ReservationErrorCode.SLOT_TOO_SOON
        if slot.is_full:
            return ReservationErrorCode.SLOT_FULL
        return None

    def list_centers(self, org_id: str) -> List[DonationCenter]:
        """Active donation centers of the organization."""
        if self.center_store is None:
            return []
        return self.center_store.list_active(org_id)
