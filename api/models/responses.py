# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints with HAL support.

These models document the JSON shapes in the OpenAPI schema; handlers build
the payloads with the HAL formatter.
"""

from datetime import date, datetime
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class HalResponse(BaseModel):
    """Base HAL response with links."""

    model_config = ConfigDict(populate_by_name=True)

    links: Dict[str, HalLink] = Field(default_factory=dict, alias="_links", description="HAL links")


class CenterResponse(HalResponse):
    """Donation center response model."""

    id: str = Field(..., description="Center ID")
    name: str = Field(..., description="Center name")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    country: Optional[str] = Field(None, description="Country")
    latitude: Optional[float] = Field(None, description="Latitude")
    longitude: Optional[float] = Field(None, description="Longitude")


class CenterCollection(HalResponse):
    """Collection of donation centers."""

    embedded: Dict[str, List[CenterResponse]] = Field(default_factory=dict, alias="_embedded")
    total: int = Field(..., description="Number of centers")


class SlotViewResponse(BaseModel):
    """Demand view of a single slot."""

    slot_id: str = Field(..., description="Slot ID")
    center_id: str = Field(..., description="Center ID")
    donation_type: str = Field(..., description="Donation type")
    start: datetime = Field(..., description="Slot start instant")
    iso_date: str = Field(..., description="Local calendar date (YYYY-MM-DD)")
    time: str = Field(..., description="Local start time (HH:MM)")
    capacity: int = Field(..., description="Slot capacity")
    spots_left: int = Field(..., description="Remaining spots")
    status: str = Field(..., description="available or filling")
    risk_level: str = Field(..., description="normal or high")


class DayAvailabilityResponse(BaseModel):
    """Day bucket of the availability calendar."""

    iso_date: str = Field(..., description="Local calendar date (YYYY-MM-DD)")
    status: str = Field(..., description="available, filling or high-demand")
    total_spots_left: int = Field(..., description="Spots left across the day")
    slots: List[SlotViewResponse] = Field(default_factory=list)


class AvailabilityResponse(HalResponse):
    """Availability calendar for a center and donation type."""

    center_id: str = Field(..., description="Center ID")
    donation_type: str = Field(..., description="Donation type")
    timezone: str = Field(..., description="Timezone used for day buckets")
    days: List[DayAvailabilityResponse] = Field(default_factory=list)


class EligibilityResponse(HalResponse):
    """Outcome of an eligibility check."""

    is_eligible: bool = Field(..., description="Whether the donor may donate on the date")
    donation_type: str = Field(..., description="Donation type")
    proposed_date: date = Field(..., description="Date that was checked")
    error_code: Optional[str] = Field(None, description="Rule that was violated")
    error_message: Optional[str] = Field(None, description="Explanation for the donor")
    days_since_last_donation: Optional[int] = Field(None)
    days_remaining: Optional[int] = Field(None)
    earliest_eligible_date: Optional[date] = Field(None)
    next_eligible_year: Optional[int] = Field(None)


class AppointmentResponse(HalResponse):
    """Appointment response model."""

    id: str = Field(..., description="Appointment ID")
    donor_id: str = Field(..., description="Donor ID")
    slot_id: str = Field(..., description="Slot ID")
    center_id: str = Field(..., description="Center ID")
    appointment_datetime: datetime = Field(..., description="Appointment instant")
    donation_type: str = Field(..., description="Donation type")
    status: str = Field(..., description="SCHEDULED or CANCELLED")
    booking_channel: str = Field(..., description="Booking channel")
    cancelled_at: Optional[datetime] = Field(None, description="Cancellation timestamp")


class AppointmentCollection(HalResponse):
    """Collection of the donor's appointments."""

    embedded: Dict[str, List[AppointmentResponse]] = Field(default_factory=dict, alias="_embedded")
    total: int = Field(..., description="Number of appointments")


class ReservationResponse(HalResponse):
    """Outcome of a reservation attempt."""

    outcome: str = Field(..., description="CONFIRMED, REJECTED or ROLLED_BACK")
    slot_id: str = Field(..., description="Slot ID")
    error_code: Optional[str] = Field(None)
    error_message: Optional[str] = Field(None)
    error_kind: Optional[str] = Field(None)
    retryable: bool = Field(default=False)
    transitions: List[str] = Field(default_factory=list)
    appointment: Optional[AppointmentResponse] = Field(None)
    eligibility: Optional[Dict[str, Any]] = Field(None)


class ReleaseResponse(HalResponse):
    """Outcome of cancelling an appointment."""

    appointment_id: str = Field(..., description="Appointment ID")
    cancelled: bool = Field(..., description="Whether the appointment is cancelled")
    capacity_released: bool = Field(..., description="Whether the slot spot was freed")
    attempts: int = Field(default=0, description="Conditional slot writes attempted")
    error_code: Optional[str] = Field(None)
    error_message: Optional[str] = Field(None)


class ReconcileResponse(HalResponse):
    """Outcome of a slot reconciliation."""

    slot_id: str = Field(..., description="Slot ID")
    orphans_deleted: List[str] = Field(default_factory=list)
    holds_released: List[str] = Field(default_factory=list)


class HealthCheckResponse(HalResponse):
    """Health check response model."""

    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field(..., description="API version")
    dependencies: Dict[str, Any] = Field(default_factory=dict, description="Dependency health status")


class ErrorResponse(BaseModel):
    """RFC 7807 error response model."""

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Error detail message")
    instance: Optional[str] = Field(None, description="Request path")
    timestamp: Optional[datetime] = Field(None, description="Error timestamp")
    validation_errors: Optional[List[Dict[str, Any]]] = Field(None, description="Field-level validation errors")
