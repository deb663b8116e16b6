# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the donor booking platform.
"""

# Base models
from .base import BaseEntity, generate_object_id, utc_now, ensure_utc

# Enumerations
from .enums import (
    DonationType,
    AppointmentStatus,
    DonationRecordStatus,
    BookingChannel,
    SlotStatus,
    RiskLevel,
    DayStatus,
    ReservationState,
    ReservationOutcome,
    ErrorKind,
    EligibilityErrorCode,
    ReservationErrorCode,
    AuditAction
)

# Core entities
from .entities import (
    DonationCenter,
    AvailabilitySlot,
    Appointment,
    DonationRecord,
    DonationSummary,
    DonorDonationProfile,
    DonorContext,
    AuditLog
)

# Request models
from .requests import (
    ReserveAppointmentRequest,
    EligibilityCheckRequest,
    AvailabilityQuery,
    AppointmentListQuery,
    AppointmentPath,
    SlotPath,
    ReconcileSlotQuery
)

# Response models
from .responses import (
    HalLink,
    HalResponse,
    CenterResponse,
    CenterCollection,
    SlotViewResponse,
    DayAvailabilityResponse,
    AvailabilityResponse,
    EligibilityResponse,
    AppointmentResponse,
    AppointmentCollection,
    ReservationResponse,
    ReleaseResponse,
    ReconcileResponse,
    HealthCheckResponse,
    ErrorResponse
)

__all__ = [
    # Base models
    "BaseEntity",
    "generate_object_id",
    "utc_now",
    "ensure_utc",

    # Enumerations
    "DonationType",
    "AppointmentStatus",
    "DonationRecordStatus",
    "BookingChannel",
    "SlotStatus",
    "RiskLevel",
    "DayStatus",
    "ReservationState",
    "ReservationOutcome",
    "ErrorKind",
    "EligibilityErrorCode",
    "ReservationErrorCode",
    "AuditAction",

    # Core entities
    "DonationCenter",
    "AvailabilitySlot",
    "Appointment",
    "DonationRecord",
    "DonationSummary",
    "DonorDonationProfile",
    "DonorContext",
    "AuditLog",

    # Request models
    "ReserveAppointmentRequest",
    "EligibilityCheckRequest",
    "AvailabilityQuery",
    "AppointmentListQuery",
    "AppointmentPath",
    "SlotPath",
    "ReconcileSlotQuery",

    # Response models
    "HalLink",
    "HalResponse",
    "CenterResponse",
    "CenterCollection",
    "SlotViewResponse",
    "DayAvailabilityResponse",
    "AvailabilityResponse",
    "EligibilityResponse",
    "AppointmentResponse",
    "AppointmentCollection",
    "ReservationResponse",
    "ReleaseResponse",
    "ReconcileResponse",
    "HealthCheckResponse",
    "ErrorResponse"
]
