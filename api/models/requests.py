# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.
"""

from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, field_validator
from .enums import DonationType


class DonationTypeField(BaseModel):
    """Mixin for requests that carry a donation type."""

    donation_type: str = Field(..., description="Donation type (whole_blood or plasma)")

    @field_validator('donation_type')
    @classmethod
    def validate_donation_type(cls, v):
        """Normalise legacy spellings to the canonical value."""
        return DonationType.parse(v).value


class ReserveAppointmentRequest(DonationTypeField):
    """Request model for reserving a spot on a slot."""

    slot_id: str = Field(..., min_length=1, description="Slot to reserve")

    @field_validator('slot_id')
    @classmethod
    def validate_slot_id(cls, v):
        """Validate slot identifier."""
        if not v.strip():
            raise ValueError('slot_id cannot be empty')
        return v.strip()


class EligibilityCheckRequest(DonationTypeField):
    """Request model for a standalone eligibility check."""

    proposed_date: date = Field(..., description="Date the donor wants to donate on")


class AvailabilityQuery(DonationTypeField):
    """Query parameters for the availability calendar."""

    center_id: str = Field(..., min_length=1, description="Donation center")


class AppointmentListQuery(BaseModel):
    """Query parameters for listing the donor's appointments."""

    include_cancelled: bool = Field(default=False, description="Include cancelled appointments")
    donation_type: Optional[str] = Field(None, description="Filter by donation type")

    @field_validator('donation_type')
    @classmethod
    def validate_donation_type(cls, v):
        """Normalise legacy spellings to the canonical value."""
        if v is None:
            return v
        return DonationType.parse(v).value


class AppointmentPath(BaseModel):
    """Path parameters for appointment resources."""

    appointment_id: str = Field(..., min_length=1, description="Appointment identifier")


class SlotPath(BaseModel):
    """Path parameters for slot resources."""

    slot_id: str = Field(..., min_length=1, description="Slot identifier")


class ReconcileSlotQuery(BaseModel):
    """Query parameters for repairing a slot after failed compensations."""

    grace_minutes: int = Field(default=15, ge=0, le=1440, description="Ignore appointments younger than this")
