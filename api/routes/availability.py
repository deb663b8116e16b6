# SPDX-License-Identifier: Apache-2.0

"""
Donation center and availability endpoints.

Read-only views a donor uses before booking: the organization's active
centers and the bookable slots of one center grouped by day.
"""

from flask import current_app, g, jsonify
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from middleware.auth import require_donor
from models.requests import AvailabilityQuery
from models.responses import AvailabilityResponse, CenterCollection, ErrorResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

availability_tag = Tag(name="Availability", description="Donation centers and bookable slots")
availability_bp = APIBlueprint(
    'availability',
    __name__,
    url_prefix='/api',
    abp_tags=[availability_tag]
)


@availability_bp.get(
    '/centers',
    summary="List donation centers",
    responses={200: CenterCollection, 401: ErrorResponse}
)
@require_donor
def list_centers():
    """Active donation centers of the donor's organization."""
    donor_context = g.donor_context
    coordinator = current_app.reservation_coordinator

    centers = coordinator.list_centers(donor_context)
    response = current_app.hal_formatter.format_center_collection(
        [center.model_dump(mode="json") for center in centers]
    )
    return jsonify(response), 200


@availability_bp.get(
    '/availability',
    summary="Bookable slots of a center, grouped by day",
    responses={200: AvailabilityResponse, 400: ErrorResponse, 401: ErrorResponse}
)
@require_donor
def get_availability(query: AvailabilityQuery):
    """
    Availability calendar for one center and donation type.

    Full slots never appear. Days are bucketed in the booking timezone and
    each carries a demand status.
    """
    donor_context = g.donor_context
    coordinator = current_app.reservation_coordinator

    with tracer.start_as_current_span(
        "availability.get",
        attributes={
            "organization.id": donor_context.org_id,
            "center.id": query.center_id,
            "donation.type": query.donation_type
        }
    ):
        days = coordinator.list_availability(donor_context, query.center_id, query.donation_type)

    logger.debug(
        "Availability served",
        extra={
            "org_id": donor_context.org_id,
            "center_id": query.center_id,
            "donation_type": query.donation_type,
            "days": len(days)
        }
    )

    response = current_app.hal_formatter.format_availability(
        query.center_id,
        query.donation_type,
        current_app.config['BOOKING_TIMEZONE'],
        [day.to_dict() for day in days]
    )
    return jsonify(response), 200
