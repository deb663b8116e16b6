# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with multi-tenant operations and connection pooling.
"""

import os
import logging
from typing import List, Dict, Optional, Any, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
    WTimeoutError
)
from bson import ObjectId
from bson.errors import InvalidId

from middleware.error_handler import PersistenceException, StoreTimeoutException
from models.base import utc_now

logger = logging.getLogger(__name__)

# Errors after which a write may or may not have been applied
UNKNOWN_OUTCOME_ERRORS = (NetworkTimeout, ExecutionTimeout, WTimeoutError)


class MongoDBService:
    """MongoDB service with multi-tenant operations and connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/donor_booking_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'donor_booking_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))
        self.socket_timeout_ms = int(os.getenv('MONGODB_SOCKET_TIMEOUT_MS', '10000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    socketTimeoutMS=self.socket_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise PersistenceException("Database is unavailable", operation="connect") from e

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            # Ping the database
            result = self.client.admin.command('ping')

            # Get server info
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except (PyMongoError, PersistenceException) as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def _validate_object_id(self, doc_id: str) -> ObjectId:
        """Validate and convert string ID to ObjectId."""
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid ObjectId format: {doc_id}")

    def _build_org_query(self, org_id: str, filters: Dict = None) -> Dict:
        """Build organization-scoped query with optional filters."""
        query = {"organizationId": org_id}

        # Add additional filters
        if filters:
            query.update(filters)

        return query

    def _add_timestamps(self, document: Dict, user_id: str, is_update: bool = False) -> Dict:
        """Add creation and update timestamps to document."""
        now = utc_now()

        if not is_update:
            document.setdefault("createdAt", now)
            document.setdefault("createdBy", user_id)

        document["updatedAt"] = now
        document["updatedBy"] = user_id

        return document

    def _wrap_error(self, error: PyMongoError, operation: str, collection: str) -> PersistenceException:
        """Translate a driver error into the service's persistence exceptions."""
        if isinstance(error, UNKNOWN_OUTCOME_ERRORS):
            return StoreTimeoutException(
                f"Timed out during {operation} on {collection}",
                operation=operation
            )
        return PersistenceException(
            f"Database error during {operation} on {collection}",
            operation=operation
        )

    @staticmethod
    def _externalize(document: Dict) -> Dict:
        """Expose the ObjectId as a string ``id`` field."""
        if "_id" in document:
            document["id"] = str(document["_id"])
            del document["_id"]
        return document

    # CRUD Operations with Organization Scoping

    def create(self, collection: str, document: Dict, user_id: str) -> str:
        """Create a new document with organization scoping."""
        try:
            # Add timestamps and ensure organization scoping
            document = self._add_timestamps(document, user_id)

            # Ensure document has an ID
            if "_id" not in document:
                document["_id"] = ObjectId()

            # Insert document
            collection_obj = self.get_collection(collection)
            result = collection_obj.insert_one(document)

            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)

        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")
        except PyMongoError as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise self._wrap_error(e, "create", collection) from e

    def find_by_org(self, collection: str, org_id: str, filters: Dict = None,
                    sort: Optional[List[Tuple[str, int]]] = None, limit: int = 0) -> List[Dict]:
        """Find documents by organization with optional filters and sort order."""
        try:
            query = self._build_org_query(org_id, filters)
            collection_obj = self.get_collection(collection)

            cursor = collection_obj.find(query)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)

            documents = [self._externalize(doc) for doc in cursor]

            logger.debug(f"Found {len(documents)} documents in {collection} for org {org_id}")
            return documents

        except PyMongoError as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise self._wrap_error(e, "find", collection) from e

    def find_one_by_org(self, collection: str, org_id: str, doc_id: str) -> Optional[Dict]:
        """Find a single document by organization and ID."""
        try:
            object_id = self._validate_object_id(doc_id)
            query = self._build_org_query(org_id, {"_id": object_id})

            collection_obj = self.get_collection(collection)
            document = collection_obj.find_one(query)

            if document:
                self._externalize(document)
                logger.debug(f"Found document {doc_id} in {collection}")
            else:
                logger.debug(f"Document {doc_id} not found in {collection} for org {org_id}")

            return document

        except ValueError as e:
            logger.warning(f"Invalid document ID {doc_id}: {e}")
            return None
        except PyMongoError as e:
            logger.error(f"Failed to find document {doc_id} in {collection}: {e}")
            raise self._wrap_error(e, "find_one", collection) from e

    def conditional_update_by_org(self, collection: str, org_id: str, doc_id: str,
                                  expected: Dict, update: Dict, user_id: str) -> bool:
        """
        Apply an update only if the stored document still matches ``expected``.

        This is the compare-and-swap primitive: the filter carries the values
        the caller read earlier, so a concurrent writer that changed any of
        them makes the update match nothing.

        Args:
            collection: Collection name
            org_id: Organization scope
            doc_id: Document ID
            expected: Field values the stored document must still have
            update: MongoDB update document (operators such as $set, $inc, $push)
            user_id: Actor recorded in updatedBy

        Returns:
            True if exactly one document matched and was updated

        Raises:
            StoreTimeoutException: The outcome of the write is unknown
            PersistenceException: The write failed
        """
        try:
            object_id = self._validate_object_id(doc_id)
        except ValueError as e:
            logger.warning(f"Invalid document ID {doc_id}: {e}")
            return False

        query = self._build_org_query(org_id, {"_id": object_id, **expected})
        update = dict(update)
        update["$set"] = self._add_timestamps(dict(update.get("$set", {})), user_id, is_update=True)

        try:
            collection_obj = self.get_collection(collection)
            result = collection_obj.update_one(query, update)
        except PyMongoError as e:
            logger.error(f"Failed to update document {doc_id} in {collection}: {e}")
            raise self._wrap_error(e, "update", collection) from e

        if result.matched_count == 1:
            logger.info(f"Updated document {doc_id} in {collection}")
            return True

        logger.info(
            f"Conditional update matched nothing for {doc_id} in {collection}",
            extra={"collection": collection, "doc_id": doc_id, "expected": list(expected.keys())}
        )
        return False

    def hard_delete_by_org(self, collection: str, org_id: str, doc_id: str) -> bool:
        """Hard delete a document (use with caution)."""
        try:
            object_id = self._validate_object_id(doc_id)
            query = self._build_org_query(org_id, {"_id": object_id})

            collection_obj = self.get_collection(collection)
            result = collection_obj.delete_one(query)

            if result.deleted_count > 0:
                logger.warning(f"Hard deleted document {doc_id} in {collection}")
                return True
            else:
                logger.warning(f"No document hard deleted for {doc_id} in {collection}")
                return False

        except ValueError as e:
            logger.error(f"Invalid document ID {doc_id}: {e}")
            return False
        except PyMongoError as e:
            logger.error(f"Failed to hard delete document {doc_id} in {collection}: {e}")
            raise self._wrap_error(e, "delete", collection) from e

    # Index Management

    def create_indexes(self) -> None:
        """Create performance indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            # Donation centers indexes
            centers = self.get_collection("donation_centers")
            centers.create_index([("organizationId", ASCENDING), ("isActive", ASCENDING), ("name", ASCENDING)])

            # Availability slots indexes
            slots = self.get_collection("availability_slots")
            slots.create_index([
                ("organizationId", ASCENDING),
                ("centerId", ASCENDING),
                ("donationType", ASCENDING),
                ("slotDatetime", ASCENDING)
            ])
            slots.create_index([("organizationId", ASCENDING), ("appointmentIds", ASCENDING)])

            # Appointments indexes
            appointments = self.get_collection("appointments")
            appointments.create_index([
                ("organizationId", ASCENDING),
                ("donorId", ASCENDING),
                ("donationType", ASCENDING),
                ("status", ASCENDING)
            ])
            appointments.create_index([("organizationId", ASCENDING), ("slotId", ASCENDING), ("createdAt", ASCENDING)])

            # Donation history indexes
            history = self.get_collection("donation_history")
            history.create_index([
                ("organizationId", ASCENDING),
                ("donorId", ASCENDING),
                ("donationType", ASCENDING),
                ("donationDate", DESCENDING)
            ])

            # Audit logs indexes
            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("organizationId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("organizationId", ASCENDING), ("userId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("organizationId", ASCENDING), ("entity", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except PyMongoError as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise self._wrap_error(e, "create_indexes", "*") from e


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
        _mongodb_service = None
