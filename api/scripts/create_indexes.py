#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Create the MongoDB indexes the booking engine relies on.

Slot reads by center and type, donor appointment queries and the
donation history lookups all need them; run once per environment.
"""

import sys
import os
import logging

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.mongodb import close_mongodb_connection, get_mongodb_service
from services.stores import (
    APPOINTMENTS_COLLECTION,
    CENTERS_COLLECTION,
    DONATION_HISTORY_COLLECTION,
    SLOTS_COLLECTION
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

BOOKING_COLLECTIONS = (
    CENTERS_COLLECTION,
    SLOTS_COLLECTION,
    APPOINTMENTS_COLLECTION,
    DONATION_HISTORY_COLLECTION,
    "audit_logs"
)


def main() -> int:
    """Create MongoDB indexes; returns the process exit code."""
    try:
        mongodb_service = get_mongodb_service()

        health = mongodb_service.health_check()
        if health['status'] != 'healthy':
            logger.error(f"MongoDB is not healthy: {health}")
            return 1

        logger.info(f"Connected to MongoDB {health['version']} - Database: {health['database']}")

        mongodb_service.create_indexes()

        for collection in BOOKING_COLLECTIONS:
            names = sorted(mongodb_service.get_collection(collection).index_information())
            logger.info(f"{collection}: {', '.join(names)}")

        logger.info("Booking indexes are in place")
        return 0

    except Exception as e:
        logger.error(f"Failed to create indexes: {e}")
        return 1
    finally:
        close_mongodb_connection()


if __name__ == "__main__":
    sys.exit(main())
