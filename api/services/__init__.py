# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Persistence, booking workflows and side effects.
"""

from .mongodb import MongoDBService, get_mongodb_service, close_mongodb_connection
from .stores import SlotStore, AppointmentStore, DonorStore, CenterStore

__all__ = [
    "MongoDBService",
    "get_mongodb_service",
    "close_mongodb_connection",
    "SlotStore",
    "AppointmentStore",
    "DonorStore",
    "CenterStore"
]
