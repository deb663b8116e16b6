# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the donor booking platform.
"""

from datetime import date, datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from .base import BaseEntity, ensure_utc, utc_now
from .enums import (
    AppointmentStatus,
    BookingChannel,
    DonationRecordStatus,
    DonationType
)


class DonationCenter(BaseEntity):
    """Donation center reference data, managed outside this service."""

    name: str = Field(..., min_length=1, max_length=200, description="Center name")
    address: Optional[str] = Field(None, max_length=500, description="Street address")
    city: Optional[str] = Field(None, max_length=100, description="City")
    country: str = Field(default="Italy", description="Country")
    contact_phone: Optional[str] = Field(None, description="Contact phone number")
    email: Optional[str] = Field(None, description="Contact email")
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="Latitude")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="Longitude")
    is_active: bool = Field(default=True, description="Whether the center accepts bookings")


class AvailabilitySlot(BaseEntity):
    """A bookable time window at a center for one donation type."""

    center_id: str = Field(..., min_length=1, description="Center identifier")
    slot_datetime: datetime = Field(..., description="Slot start instant (UTC)")
    donation_type: DonationType = Field(..., description="Donation type served by this slot")
    capacity: int = Field(..., gt=0, description="Maximum concurrent bookings")
    current_bookings: int = Field(default=0, ge=0, description="Spots currently held")
    appointment_ids: List[str] = Field(default_factory=list, description="Appointments holding a spot")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    is_available: bool = Field(default=True, description="Staff switch to disable the slot")

    @field_validator('donation_type', mode='before')
    @classmethod
    def normalize_donation_type(cls, v):
        """Accept legacy donation type spellings."""
        return DonationType.parse(v)

    @field_validator('slot_datetime')
    @classmethod
    def normalize_slot_datetime(cls, v):
        """Store slot instants as UTC."""
        return ensure_utc(v)

    @model_validator(mode='after')
    def validate_bookings(self):
        """A slot can never hold more bookings than its capacity."""
        if self.current_bookings > self.capacity:
            raise ValueError(
                f'current_bookings ({self.current_bookings}) exceeds capacity ({self.capacity})'
            )
        return self

    @property
    def spots_left(self) -> int:
        """Remaining spots, never negative."""
        return max(self.capacity - self.current_bookings, 0)

    @property
    def is_full(self) -> bool:
        """Whether every spot is taken."""
        return self.current_bookings >= self.capacity

    def holds(self, appointment_id: str) -> bool:
        """Check whether an appointment currently holds a spot on this slot."""
        return appointment_id in self.appointment_ids


class Appointment(BaseEntity):
    """A donor's booking against a slot."""

    donor_id: str = Field(..., min_length=1, description="Donor identifier")
    slot_id: str = Field(..., min_length=1, description="Slot identifier")
    center_id: str = Field(..., min_length=1, description="Center identifier")
    appointment_datetime: datetime = Field(..., description="Appointment instant (UTC)")
    donation_type: DonationType = Field(..., description="Donation type")
    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED, description="Lifecycle status")
    booking_channel: BookingChannel = Field(default=BookingChannel.ONLINE, description="Booking channel")
    cancelled_at: Optional[datetime] = Field(None, description="Cancellation timestamp")

    @field_validator('donation_type', mode='before')
    @classmethod
    def normalize_donation_type(cls, v):
        """Accept legacy donation type spellings."""
        return DonationType.parse(v)

    @field_validator('appointment_datetime')
    @classmethod
    def normalize_appointment_datetime(cls, v):
        """Store appointment instants as UTC."""
        return ensure_utc(v)

    @model_validator(mode='after')
    def validate_cancellation(self):
        """Cancelled appointments carry a cancellation timestamp."""
        if self.status == AppointmentStatus.CANCELLED and self.cancelled_at is None:
            raise ValueError('cancelled_at is required for cancelled appointments')
        return self

    def is_scheduled(self) -> bool:
        """Check if the appointment still holds a spot."""
        return self.status == AppointmentStatus.SCHEDULED


class DonationRecord(BaseEntity):
    """Completed donation from the donor's history."""

    donor_id: str = Field(..., min_length=1, description="Donor identifier")
    donation_type: DonationType = Field(..., description="Donation type")
    donation_date: datetime = Field(..., description="When the donation happened")
    status: DonationRecordStatus = Field(default=DonationRecordStatus.COMPLETED, description="Record status")

    @field_validator('donation_type', mode='before')
    @classmethod
    def normalize_donation_type(cls, v):
        """Accept legacy donation type spellings."""
        return DonationType.parse(v)


class DonationSummary(BaseModel):
    """Aggregate of completed donations returned by the donor store."""

    last_donation_date: Optional[date] = Field(None, description="Most recent completed donation")
    donations_completed: int = Field(default=0, ge=0, description="Completed donations in the year")


class DonorDonationProfile(BaseModel):
    """Derived donation history of one donor for one donation type."""

    model_config = ConfigDict(use_enum_values=True)

    donor_id: str = Field(..., description="Donor identifier")
    donation_type: DonationType = Field(..., description="Donation type")
    last_donation_date: Optional[date] = Field(None, description="Most recent completed or scheduled donation")
    donations_completed_this_year: int = Field(default=0, ge=0, description="Completed donations this year")
    scheduled_this_year: int = Field(default=0, ge=0, description="Upcoming scheduled donations this year")

    @property
    def donations_this_year(self) -> int:
        """Completed plus scheduled donations counted against the annual cap."""
        return self.donations_completed_this_year + self.scheduled_this_year


class DonorContext(BaseModel):
    """Identity of the donor on whose behalf an operation runs."""

    donor_id: str = Field(..., min_length=1, description="Donor identifier")
    org_id: str = Field(..., min_length=1, description="Organization identifier")
    email: Optional[str] = Field(None, description="Donor email")
    name: Optional[str] = Field(None, description="Donor display name")
    permissions: List[str] = Field(default_factory=list, description="Granted permissions")
    token_payload: Dict[str, Any] = Field(default_factory=dict, description="Verified JWT claims")

    # Request metadata
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")

    def has_permission(self, permission: str) -> bool:
        """Check if the caller was granted a specific permission."""
        return permission in self.permissions


class AuditLog(BaseEntity):
    """Audit log entry for reservation tracking."""

    timestamp: datetime = Field(default_factory=utc_now, description="Action timestamp")
    user_id: Optional[str] = Field(None, description="Donor or staff member who performed the action")
    entity: str = Field(..., description="Entity type affected")
    entity_id: str = Field(..., description="Entity ID affected")
    action: str = Field(..., description="Action performed")
    before: Optional[Dict[str, Any]] = Field(None, description="Entity state before action")
    after: Optional[Dict[str, Any]] = Field(None, description="Entity state after action")
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    session_id: Optional[str] = Field(None, description="Session identifier")
    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace ID")
    span_id: Optional[str] = Field(None, description="OpenTelemetry span ID")

    @field_validator('entity')
    @classmethod
    def validate_entity(cls, v):
        """Validate entity type."""
        valid_entities = ['appointment', 'availability_slot']
        if v not in valid_entities:
            raise ValueError(f'Entity must be one of: {", ".join(valid_entities)}')
        return v
