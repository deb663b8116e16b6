# SPDX-License-Identifier: Apache-2.0

"""
Donor Booking API - Flask Application Entry Point

This module initializes the Flask application with OpenAPI 3.0 support,
configures middleware, and wires the slot reservation and eligibility
engine for the multi-tenant blood donation booking platform.
"""

import os
import time
from datetime import datetime, timezone
from flask import jsonify, make_response
from flask_openapi3 import OpenAPI, Info, Tag
from observability.config import setup_observability
from observability.middleware import add_observability_middleware

from middleware.error_handler import (
    ErrorHandlerMiddleware,
    format_request_validation_error,
    register_custom_error_handlers
)
from middleware.auth import AuthMiddleware
from models.base import utc_now
from services.audit import AuditService
from services.auth import AuthService
from services.hal import create_hal_formatter
from services.health import HealthCheckService, SERVICE_NAME
from services.mongodb import MongoDBService
from services.reservations import ReservationCoordinator
from services.slot_catalog import SlotCatalog
from services.stores import AppointmentStore, CenterStore, DonorStore, SlotStore

# Initialize observability first
setup_observability()

# OpenAPI info
info = Info(
    title="Donor Booking API",
    version="1.0.0",
    description="Multi-tenant blood donation appointment booking API with HATEOAS Level-3 support"
)

# API tags for organization
tags = [
    Tag(name="Availability", description="Donation centers and bookable slots"),
    Tag(name="Appointments", description="Eligibility, booking and cancellation"),
    Tag(name="Health", description="System health and status")
]


def load_config() -> dict:
    """Read configuration from the environment."""
    environment = os.getenv('ENVIRONMENT', 'development')
    return {
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'DOCS_ENABLED': os.getenv('DOCS_ENABLED', 'true').lower() == 'true',
        'OTEL_ENABLED': os.getenv('OTEL_ENABLED', 'true').lower() == 'true',

        # Database configuration
        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/donor_booking_dev'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'donor_booking_dev'),

        # Security configuration
        'JWT_PUBLIC_KEY': os.getenv('JWT_PUBLIC_KEY', ''),

        # API configuration
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),

        # Booking rules
        'BOOKING_TIMEZONE': os.getenv('BOOKING_TIMEZONE', 'Europe/Rome'),
        'MIN_BOOKING_LEAD_MINUTES': int(os.getenv('MIN_BOOKING_LEAD_MINUTES', '60')),
        'RELEASE_MAX_ATTEMPTS': int(os.getenv('RELEASE_MAX_ATTEMPTS', '3'))
    }


def build_coordinator(mongodb_service: MongoDBService, config: dict) -> ReservationCoordinator:
    """Wire the stores, slot catalog and audit trail into a coordinator."""
    slot_store = SlotStore(mongodb_service)
    catalog = SlotCatalog(
        slot_store,
        CenterStore(mongodb_service),
        min_lead_minutes=config['MIN_BOOKING_LEAD_MINUTES'],
        booking_timezone=config['BOOKING_TIMEZONE']
    )
    return ReservationCoordinator(
        catalog,
        slot_store,
        AppointmentStore(mongodb_service),
        DonorStore(mongodb_service, booking_timezone=config['BOOKING_TIMEZONE']),
        audit_service=AuditService(mongodb_service),
        release_max_attempts=config['RELEASE_MAX_ATTEMPTS']
    )


def create_app(
    config: dict = None,
    mongodb_service: MongoDBService = None,
    reservation_coordinator: ReservationCoordinator = None,
    auth_service: AuthService = None,
    instrument: bool = True
) -> OpenAPI:
    """
    Build the Flask application.

    Collaborators default to MongoDB-backed implementations; tests pass
    their own.
    """
    settings = load_config()
    settings.update(config or {})

    hal_formatter = create_hal_formatter(settings['BASE_URL'])

    def validation_error_response(error):
        problem = format_request_validation_error(error, hal_formatter)
        return make_response(jsonify(problem), 400)

    app = OpenAPI(
        __name__,
        info=info,
        doc_ui=settings['DOCS_ENABLED'],
        validation_error_status=400,
        validation_error_callback=validation_error_response
    )
    app.config.update(settings)

    add_observability_middleware(app, instrument=instrument)

    # Initialize services
    mongodb_service = mongodb_service or MongoDBService(settings['MONGODB_URI'], settings['MONGODB_DATABASE'])
    auth_service = auth_service or AuthService(settings['JWT_PUBLIC_KEY'] or None)
    reservation_coordinator = reservation_coordinator or build_coordinator(mongodb_service, settings)
    health_service = HealthCheckService(mongodb_service, {
        "booking_timezone": settings['BOOKING_TIMEZONE'],
        "min_booking_lead_minutes": settings['MIN_BOOKING_LEAD_MINUTES'],
        "release_max_attempts": settings['RELEASE_MAX_ATTEMPTS']
    })

    # Error handling
    ErrorHandlerMiddleware(app, hal_formatter)
    register_custom_error_handlers(app, hal_formatter)

    # Make services available to routes
    app.mongodb_service = mongodb_service
    app.auth_service = auth_service
    app.auth_middleware = AuthMiddleware(auth_service)
    app.reservation_coordinator = reservation_coordinator
    app.health_service = health_service
    app.hal_formatter = hal_formatter

    # Register routes
    from routes.availability import availability_bp
    from routes.appointments import appointments_bp

    app.register_api(availability_bp)
    app.register_api(appointments_bp)

    health_tag = Tag(name="Health", description="System health and status")

    @app.get('/api/healthz', tags=[health_tag], summary="Health check")
    def health_check():
        """Health check with dependency monitoring"""
        try:
            health_data = health_service.get_comprehensive_health()
            status_code = 503 if health_data["status"] == "unhealthy" else 200
        except Exception as e:
            health_data = {
                "status": "unhealthy",
                "service": SERVICE_NAME,
                "environment": app.config['ENVIRONMENT'],
                "timestamp": utc_now().isoformat(),
                "error": f"Health check service failed: {str(e)}"
            }
            status_code = 503

        return jsonify(hal_formatter.builder.build_resource_response(health_data, "/api/healthz")), status_code

    @app.get('/api/status', tags=[health_tag], summary="Process status")
    def system_status():
        """Process uptime and booking configuration"""
        status_data = {
            "service": SERVICE_NAME,
            "environment": app.config['ENVIRONMENT'],
            "timestamp": utc_now().isoformat(),
            "uptime": _get_application_uptime(),
            "booking": {
                "timezone": app.config['BOOKING_TIMEZONE'],
                "min_booking_lead_minutes": app.config['MIN_BOOKING_LEAD_MINUTES'],
                "release_max_attempts": app.config['RELEASE_MAX_ATTEMPTS']
            },
            "system_metrics": health_service._get_system_metrics()
        }
        return jsonify(hal_formatter.builder.build_resource_response(status_data, "/api/status")), 200

    return app


def _get_application_uptime():
    """Get application uptime information."""
    try:
        import psutil
        process = psutil.Process(os.getpid())
        create_time = process.create_time()
        return {
            "uptime_seconds": round(time.time() - create_time, 2),
            "started_at": datetime.fromtimestamp(create_time, tz=timezone.utc).isoformat(),
            "process_id": os.getpid()
        }
    except Exception as e:
        return {
            "error": f"Failed to get uptime: {str(e)}"
        }


if __name__ == '__main__':
    # Development server
    app = create_app()
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=app.config['DEBUG']
    )
