# SPDX-License-Identifier: Apache-2.0

"""
Health Check Service

Reports MongoDB connectivity, booking configuration and basic system
metrics for the donor booking API.
"""

import os
import time
import psutil
from typing import Dict, Any, List
from opentelemetry import trace

from models.base import utc_now
from services.mongodb import MongoDBService

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "donor-booking-api"


class HealthCheckService:
    """Service for system health monitoring."""

    def __init__(self, mongodb_service: MongoDBService, booking_config: Dict[str, Any] = None):
        self.mongodb_service = mongodb_service
        self.booking_config = booking_config or {}
        self.service_version = os.getenv('SERVICE_VERSION', '1.0.0')

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get health status including dependencies and metrics."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            mongodb_health = self._check_mongodb_health()
            system_metrics = self._get_system_metrics()
            overall_status = self._determine_overall_status([mongodb_health["status"]])

            response_time_ms = round((time.time() - start_time) * 1000, 2)

            health_data = {
                "status": overall_status,
                "service": SERVICE_NAME,
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": utc_now().isoformat(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "mongodb": mongodb_health
                },
                "system_metrics": system_metrics,
                "configuration": self._get_configuration_status()
            }

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
                "health.mongodb_status": mongodb_health["status"]
            })

            return health_data

    def _check_mongodb_health(self) -> Dict[str, Any]:
        """Check MongoDB connectivity and latency."""
        with tracer.start_as_current_span("health.mongodb_check") as span:
            try:
                start_time = time.time()
                result = self.mongodb_service.health_check()
                if result.get("status") != "healthy":
                    raise RuntimeError(result.get("error", "MongoDB ping failed"))

                response_time = round((time.time() - start_time) * 1000, 2)
                span.set_attributes({
                    "mongodb.status": "healthy",
                    "mongodb.response_time_ms": response_time,
                    "mongodb.version": result.get("version") or "unknown"
                })
                return {
                    "status": "healthy",
                    "response_time_ms": response_time,
                    "version": result.get("version") or "unknown",
                    "database": result.get("database"),
                    "last_check": utc_now().isoformat()
                }

            except Exception as e:
                span.set_attribute("mongodb.status", "unhealthy")
                span.record_exception(e)
                return {
                    "status": "unhealthy",
                    "error": str(e),
                    "last_check": utc_now().isoformat()
                }

    def _get_system_metrics(self) -> Dict[str, Any]:
        """Get basic system performance metrics."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)

            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')

            return {
                "cpu_percent": cpu_percent,
                "memory": {
                    "used_mb": round(memory.used / 1024 / 1024, 2),
                    "total_mb": round(memory.total / 1024 / 1024, 2),
                    "percent": memory.percent
                },
                "disk": {
                    "used_gb": round(disk.used / 1024 / 1024 / 1024, 2),
                    "total_gb": round(disk.total / 1024 / 1024 / 1024, 2),
                    "percent": round((disk.used / disk.total) * 100, 2)
                },
                "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
            }
        except Exception as e:
            return {
                "error": f"Failed to collect system metrics: {str(e)}"
            }

    def _get_configuration_status(self) -> Dict[str, Any]:
        """Get configuration validation status."""
        config_status = {
            "mongodb_uri_configured": bool(os.getenv('MONGODB_URI')),
            "jwt_public_key_configured": bool(os.getenv('JWT_PUBLIC_KEY')),
            "environment": os.getenv('ENVIRONMENT', 'development')
        }
        config_status.update(self.booking_config)
        config_status["all_critical_configured"] = config_status["mongodb_uri_configured"]
        return config_status

    def _determine_overall_status(self, dependency_statuses: List[str]) -> str:
        """Determine overall system status based on dependency health."""
        if all(status == "healthy" for status in dependency_statuses):
            return "healthy"
        elif any(status == "healthy" for status in dependency_statuses):
            return "degraded"
        else:
            return "unhealthy"
