# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for booking action logging with OpenTelemetry correlation.
"""

import logging
from typing import Dict, List, Optional, Any
from opentelemetry import trace
from bson import ObjectId

from .mongodb import MongoDBService
from models.entities import AuditLog, DonorContext

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Service for audit logging with MongoDB persistence and organization scoping."""

    def __init__(self, mongo_service: MongoDBService):
        """Initialize audit service with MongoDB dependency."""
        self.mongo_service = mongo_service
        self.collection_name = "audit_logs"
        logger.info("Audit service initialized")

    def log_action(
        self,
        user_id: str,
        org_id: str,
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        donor_context: Optional[DonorContext] = None
    ) -> str:
        """
        Log an audit trail entry with trace correlation and structured logging.

        Args:
            user_id: ID of the donor or staff member performing the action
            org_id: Organization ID for multi-tenant scoping
            entity: Type of entity being acted upon
            entity_id: ID of the specific entity
            action: Action being performed
            before: State before the action (optional)
            after: State after the action (optional)
            donor_context: Caller context with request details (optional)

        Returns:
            str: ID of the created audit log entry
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            try:
                # Get current span context for trace correlation
                span_context = span.get_span_context()

                entry = AuditLog(
                    organization_id=org_id,
                    user_id=user_id,
                    entity=entity,
                    entity_id=entity_id,
                    action=action,
                    before=before,
                    after=after,
                    created_by=user_id,
                    updated_by=user_id
                )

                # Add trace correlation if available
                if span_context.is_valid:
                    entry.trace_id = format(span_context.trace_id, "032x")
                    entry.span_id = format(span_context.span_id, "016x")

                # Add request context if available
                if donor_context:
                    entry.ip_address = donor_context.ip_address
                    entry.user_agent = donor_context.user_agent
                    entry.session_id = donor_context.session_id

                span.set_attributes({
                    "audit.entity": entity,
                    "audit.action": action,
                    "audit.user_id": user_id,
                    "audit.organization_id": org_id,
                    "audit.entity_id": entity_id
                })

                document = entry.to_document()
                document["_id"] = ObjectId(entry.id)
                audit_id = self.mongo_service.create(self.collection_name, document, user_id)

                changes_count = 0
                if before and after:
                    changes_count = len(self._calculate_changes(before, after))

                # Structured logging for audit event
                logger.info(
                    "Audit trail entry created",
                    extra={
                        "audit_id": audit_id,
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_id,
                        "organization_id": org_id,
                        "trace_id": entry.trace_id,
                        "changes_count": changes_count,
                        "audit_category": "booking_action"
                    }
                )

                return audit_id

            except Exception as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                logger.error(
                    "Failed to create audit trail entry",
                    extra={
                        "entity": entity,
                        "entity_id": entity_id,
                        "action": action,
                        "user_id": user_id,
                        "organization_id": org_id,
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

    def _calculate_changes(self, before: Dict[str, Any], after: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Calculate field-level changes for detailed audit trail.

        Args:
            before: State before the change
            after: State after the change

        Returns:
            List[Dict]: List of field changes
        """
        changes = []

        for key in set(before.keys()) | set(after.keys()):
            # Skip timestamp fields and internal fields
            if key in ["updated_at", "updated_by", "updatedAt", "updatedBy", "_id", "id"]:
                continue

            old_value = before.get(key)
            new_value = after.get(key)
            if old_value != new_value:
                changes.append({
                    "field": key,
                    "old_value": old_value,
                    "new_value": new_value
                })

        return changes
