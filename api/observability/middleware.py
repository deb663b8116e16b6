# SPDX-License-Identifier: Apache-2.0

"""
Observability Middleware

Flask hooks adding OpenTelemetry instrumentation and request logging to
every booking API call.
"""

import time
import logging
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

logger = logging.getLogger(__name__)


def add_observability_middleware(app: Flask, instrument: bool = True):
    """Add OpenTelemetry instrumentation and request logging to Flask app."""

    if instrument:
        FlaskInstrumentor().instrument_app(app)

    @app.before_request
    def before_request():
        """Set up request context and start timing."""
        g.start_time = time.time()
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            span_context = span.get_span_context()
            g.trace_id = format(span_context.trace_id, "032x")
            span.set_attributes({
                "http.target": request.path,
                "http.user_agent": request.headers.get("User-Agent", ""),
                "http.remote_addr": request.remote_addr or ""
            })

    @app.after_request
    def after_request(response):
        """Log request completion and add response attributes to span."""
        duration_ms = round((time.time() - g.get('start_time', time.time())) * 1000, 2)
        donor_context = g.get('donor_context')
        donor_id = donor_context.donor_id if donor_context is not None else None
        org_id = donor_context.org_id if donor_context is not None else None

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": duration_ms
            })
            if donor_id:
                span.set_attribute("donor.id", donor_id)
                span.set_attribute("organization.id", org_id)

        logger.info(
            "HTTP request completed",
            extra={
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "donor_id": donor_id,
                "org_id": org_id,
                "trace_id": g.get('trace_id')
            }
        )

        # Trace id lets clients quote a failed booking to support
        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
