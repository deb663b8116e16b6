# SPDX-License-Identifier: Apache-2.0

"""
Appointment booking endpoints.

Eligibility pre-flight, reservation, cancellation, the donor's appointment
list and staff slot repair. Expected booking outcomes (eligibility
rejections, capacity conflicts) are returned as reservation results with
their own status codes; only unexpected failures become problem documents.
"""

from flask import current_app, g, jsonify
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from middleware.auth import require_donor, require_permission
from models.enums import ErrorKind, ReservationErrorCode
from models.requests import (
    AppointmentListQuery,
    AppointmentPath,
    EligibilityCheckRequest,
    ReconcileSlotQuery,
    ReserveAppointmentRequest,
    SlotPath
)
from models.responses import (
    AppointmentCollection,
    EligibilityResponse,
    ErrorResponse,
    ReconcileResponse,
    ReleaseResponse,
    ReservationResponse
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RECONCILE_PERMISSION = "slot:reconcile"

appointments_tag = Tag(name="Appointments", description="Eligibility, booking and cancellation")
appointments_bp = APIBlueprint(
    'appointments',
    __name__,
    url_prefix='/api',
    abp_tags=[appointments_tag]
)

# HTTP status per error kind of a failed reservation
RESERVATION_STATUS = {
    ErrorKind.ELIGIBILITY.value: 422,
    ErrorKind.CAPACITY_CONFLICT.value: 409,
    ErrorKind.PERSISTENCE.value: 503,
    ErrorKind.VALIDATION.value: 400
}


def reservation_status_code(result) -> int:
    """HTTP status for a reservation result."""
    if result.confirmed:
        return 201
    return RESERVATION_STATUS.get(result.error_kind, 409)


def release_status_code(result) -> int:
    """HTTP status for a release result."""
    if result.error_code == ReservationErrorCode.PERSISTENCE_ERROR.value:
        return 503
    if result.error_code == ReservationErrorCode.RELEASE_CONFLICT.value:
        return 409
    return 200


@appointments_bp.post(
    '/eligibility',
    summary="Check donation eligibility for a date",
    responses={200: EligibilityResponse, 400: ErrorResponse, 401: ErrorResponse}
)
@require_donor
def check_eligibility(body: EligibilityCheckRequest):
    """
    Standalone eligibility check.

    Always answers 200; ineligibility is a normal result carrying the rule
    that failed and when the donor can book again.
    """
    donor_context = g.donor_context
    result = current_app.reservation_coordinator.check_eligibility(
        donor_context,
        body.proposed_date,
        body.donation_type
    )
    return jsonify(current_app.hal_formatter.format_eligibility(result.to_dict())), 200


@appointments_bp.post(
    '/appointments',
    summary="Reserve a spot on a slot",
    responses={
        201: ReservationResponse,
        400: ErrorResponse,
        401: ErrorResponse,
        404: ErrorResponse,
        409: ReservationResponse,
        422: ReservationResponse,
        503: ReservationResponse
    }
)
@require_donor
def reserve_appointment(body: ReserveAppointmentRequest):
    """Reserve one spot on a slot for the authenticated donor."""
    donor_context = g.donor_context

    with tracer.start_as_current_span(
        "appointments.reserve",
        attributes={
            "user.id": donor_context.donor_id,
            "organization.id": donor_context.org_id,
            "slot.id": body.slot_id
        }
    ) as span:
        result = current_app.reservation_coordinator.reserve(
            donor_context,
            body.slot_id,
            body.donation_type
        )
        status_code = reservation_status_code(result)
        span.set_attribute("http.status_code", status_code)

    return jsonify(current_app.hal_formatter.format_reservation(result.to_dict())), status_code


@appointments_bp.get(
    '/appointments',
    summary="List the donor's appointments",
    responses={200: AppointmentCollection, 400: ErrorResponse, 401: ErrorResponse}
)
@require_donor
def list_appointments(query: AppointmentListQuery):
    """The authenticated donor's appointments, scheduled only unless asked otherwise."""
    donor_context = g.donor_context
    appointments = current_app.reservation_coordinator.list_appointments(
        donor_context,
        include_cancelled=query.include_cancelled,
        donation_type=query.donation_type
    )
    filters = {'include_cancelled': str(query.include_cancelled).lower()}
    if query.donation_type:
        filters['donation_type'] = query.donation_type

    response = current_app.hal_formatter.format_appointment_collection(
        [appointment.model_dump(mode="json") for appointment in appointments],
        filters
    )
    return jsonify(response), 200


@appointments_bp.post(
    '/appointments/<appointment_id>/cancel',
    summary="Cancel an appointment and free its spot",
    responses={
        200: ReleaseResponse,
        401: ErrorResponse,
        403: ErrorResponse,
        404: ErrorResponse,
        409: ReleaseResponse,
        503: ReleaseResponse
    }
)
@require_donor
def cancel_appointment(path: AppointmentPath):
    """Cancel one of the donor's own appointments."""
    donor_context = g.donor_context
    result = current_app.reservation_coordinator.release(donor_context, path.appointment_id)
    status_code = release_status_code(result)

    logger.info(
        "Cancellation handled",
        extra={
            "donor_id": donor_context.donor_id,
            "appointment_id": path.appointment_id,
            "capacity_released": result.capacity_released,
            "error_code": result.error_code
        }
    )
    return jsonify(current_app.hal_formatter.format_release(result.to_dict())), status_code


@appointments_bp.post(
    '/slots/<slot_id>/reconcile',
    summary="Repair a slot after failed compensations",
    responses={200: ReconcileResponse, 401: ErrorResponse, 403: ErrorResponse, 404: ErrorResponse}
)
@require_permission(RECONCILE_PERMISSION)
def reconcile_slot(path: SlotPath, query: ReconcileSlotQuery):
    """Delete orphaned tentative appointments and free stale holds on a slot."""
    donor_context = g.donor_context
    result = current_app.reservation_coordinator.reconcile_slot(
        donor_context.org_id,
        path.slot_id,
        grace_minutes=query.grace_minutes,
        actor_id=donor_context.donor_id
    )
    return jsonify(current_app.hal_formatter.format_reconcile(result.to_dict())), 200
