# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS responses with state-dependent affordance links.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode

from models.enums import AppointmentStatus
from models.responses import HalLink

PROBLEM_BASE_URL = "https://api.donor-booking.org/problems/"


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url + '/', path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        """Build link to parent collection."""
        return self.build_link(collection_path, title="Collection")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        action_path = f"{resource_path}/{action}"
        return self.build_link(
            action_path,
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class AffordanceLinkBuilder:
    """Builder for affordance links that depend on resource state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_appointment_affordances(self, appointment_id: str, status: str) -> Dict[str, HalLink]:
        """Links for an appointment; only scheduled appointments can be cancelled."""
        resource_path = f"/api/appointments/{appointment_id}"
        links = {
            'self': self.link_builder.build_self_link(resource_path),
            'collection': self.link_builder.build_collection_link("/api/appointments")
        }

        if status == AppointmentStatus.SCHEDULED.value:
            links['cancel'] = self.link_builder.build_action_link(
                resource_path, "cancel", title="Cancel appointment"
            )

        return links

    def build_availability_affordances(self, center_id: str, donation_type: str) -> Dict[str, HalLink]:
        """Links for an availability calendar."""
        query = urlencode({'center_id': center_id, 'donation_type': donation_type})
        return {
            'self': self.link_builder.build_self_link(f"/api/availability?{query}"),
            'centers': self.link_builder.build_link("/api/centers", title="Donation centers"),
            'reserve': self.link_builder.build_link(
                "/api/appointments",
                method="POST",
                content_type="application/json",
                title="Reserve a slot"
            ),
            'eligibility': self.link_builder.build_link(
                "/api/eligibility",
                method="POST",
                content_type="application/json",
                title="Check eligibility"
            )
        }

    def build_reservation_affordances(
        self,
        outcome: str,
        appointment_id: Optional[str],
        retryable: bool
    ) -> Dict[str, HalLink]:
        """Links following a reservation attempt."""
        links = {
            'appointments': self.link_builder.build_link("/api/appointments", title="My appointments")
        }

        if appointment_id:
            links.update(self.build_appointment_affordances(appointment_id, AppointmentStatus.SCHEDULED.value))
        elif retryable:
            links['availability'] = self.link_builder.build_link(
                "/api/availability{?center_id,donation_type}",
                title="Choose another time",
                templated=True
            )

        return links


class HalResponseBuilder:
    """Main HAL response builder."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    @staticmethod
    def _dump_links(links: Dict[str, HalLink]) -> Dict[str, Dict[str, Any]]:
        return {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}

    def build_resource_response(
        self,
        data: Dict[str, Any],
        resource_path: str,
        links: Optional[Dict[str, HalLink]] = None
    ) -> Dict[str, Any]:
        """Build a HAL resource response with the given links."""
        response = dict(data)
        all_links = {'self': self.link_builder.build_self_link(resource_path)}
        all_links.update(links or {})
        response['_links'] = self._dump_links(all_links)
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        collection_path: str,
        embedded_key: str = "items",
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response with embedded items."""
        path = collection_path
        if query_params:
            path = f"{collection_path}?{urlencode(query_params)}"

        return {
            'total': len(items),
            '_links': self._dump_links({'self': self.link_builder.build_self_link(path)}),
            '_embedded': {
                embedded_key: items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        error_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_BASE_URL}{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if error_code:
            error_response['error_code'] = error_code

        if validation_errors:
            error_response['errors'] = validation_errors

        # Add helpful links
        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/openapi/openapi.json",
                title="API schema"
            )
        elif error_type == "persistence-error":
            links['retry'] = self.link_builder.build_link(
                instance,
                title="Retry the request"
            )

        error_response['_links'] = self._dump_links(links)
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_appointment(self, appointment: Dict[str, Any]) -> Dict[str, Any]:
        """Format an appointment with HAL links."""
        links = self.builder.affordance_builder.build_appointment_affordances(
            appointment['id'],
            appointment.get('status', '')
        )
        return self.builder.build_resource_response(
            appointment,
            f"/api/appointments/{appointment['id']}",
            links
        )

    def format_appointment_collection(
        self,
        appointments: List[Dict[str, Any]],
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Format the donor's appointments with HAL links."""
        formatted = [self.format_appointment(appointment) for appointment in appointments]
        return self.builder.build_collection_response(
            formatted,
            "/api/appointments",
            "appointments",
            filters
        )

    def format_center_collection(self, centers: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Format donation centers with links to their availability."""
        formatted = []
        for center in centers:
            links = {
                'availability': self.builder.link_builder.build_link(
                    f"/api/availability?center_id={center['id']}{{&donation_type}}",
                    title="Availability",
                    templated=True
                )
            }
            formatted.append(self.builder.build_resource_response(
                center, f"/api/centers/{center['id']}", links
            ))
        return self.builder.build_collection_response(formatted, "/api/centers", "centers")

    def format_availability(
        self,
        center_id: str,
        donation_type: str,
        timezone_name: str,
        days: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format an availability calendar."""
        data = {
            'center_id': center_id,
            'donation_type': donation_type,
            'timezone': timezone_name,
            'days': days
        }
        links = self.builder.affordance_builder.build_availability_affordances(center_id, donation_type)
        response = dict(data)
        response['_links'] = self.builder._dump_links(links)
        return response

    def format_eligibility(self, eligibility: Dict[str, Any]) -> Dict[str, Any]:
        """Format an eligibility check result."""
        links = {
            'appointments': self.builder.link_builder.build_link("/api/appointments", title="My appointments")
        }
        return self.builder.build_resource_response(eligibility, "/api/eligibility", links)

    def format_reservation(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Format a reservation result."""
        appointment = result.get('appointment')
        links = self.builder.affordance_builder.build_reservation_affordances(
            result['outcome'],
            appointment['id'] if appointment else None,
            result.get('retryable', False)
        )
        response = dict(result)
        response['_links'] = self.builder._dump_links(links)
        return response

    def format_release(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Format the outcome of a cancellation."""
        links = {
            'appointment': self.builder.link_builder.build_link(
                f"/api/appointments/{result['appointment_id']}", title="Appointment"
            ),
            'collection': self.builder.link_builder.build_collection_link("/api/appointments")
        }
        return self.builder.build_resource_response(
            result,
            f"/api/appointments/{result['appointment_id']}/cancel",
            links
        )

    def format_reconcile(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Format the outcome of a slot reconciliation."""
        return self.builder.build_resource_response(
            result,
            f"/api/slots/{result['slot_id']}/reconcile"
        )

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            400,
            detail,
            instance,
            validation_errors
        )

    def format_authentication_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format an authentication error response."""
        return self.builder.build_error_response(
            "authentication-required",
            "Authentication Required",
            401,
            detail,
            instance
        )

    def format_authorization_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format an authorization error response."""
        return self.builder.build_error_response(
            "insufficient-permissions",
            "Insufficient Permissions",
            403,
            detail,
            instance
        )

    def format_not_found_error(
        self,
        detail: str,
        instance: str,
        error_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Format a not found error response."""
        return self.builder.build_error_response(
            "resource-not-found",
            "Resource Not Found",
            404,
            detail,
            instance,
            error_code=error_code
        )

    def format_conflict_error(
        self,
        detail: str,
        instance: str,
        error_code: Optional[str] = None
    ) -> Dict[str, Any]:
        """Format a conflict error response."""
        return self.builder.build_error_response(
            "resource-conflict",
            "Resource Conflict",
            409,
            detail,
            instance,
            error_code=error_code
        )

    def format_persistence_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format a storage failure; the request can be retried."""
        return self.builder.build_error_response(
            "persistence-error",
            "Service Unavailable",
            503,
            detail,
            instance,
            error_code="PERSISTENCE_ERROR"
        )

    def format_server_error(
        self,
        detail: str,
        instance: str
    ) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error",
            "Internal Server Error",
            500,
            detail,
            instance
        )


# Convenience function for creating HAL formatter
def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
