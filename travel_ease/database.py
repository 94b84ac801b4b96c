"""
MongoDB store client for async operations.
Holds the single pooled connection and exposes typed handles for the
vehicle and booking collections.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure, PyMongoError
from pymongo.server_api import ServerApi

logger = structlog.get_logger(__name__)

OWNER_FIELD = "userEmail"
CREATED_AT_FIELD = "createdAt"
BOOKING_EMAIL_FIELD = "email"
BOOKING_ID_FIELD = "booking_id"

# MongoDB server error code for a unique index violation
DUPLICATE_KEY_CODE = 11000

SortSpec = Sequence[Tuple[str, int]]


class StoreConnectionError(Exception):
    """Raised when the document store cannot be reached or is not connected."""


class InvalidDocumentId(ValueError):
    """Raised when a path identifier is not a valid ObjectId."""


def parse_object_id(value: str) -> ObjectId:
    """
    Convert a path identifier into an ObjectId.

    Raises:
        InvalidDocumentId: If the value is not a 24-character hex id
    """
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        raise InvalidDocumentId(value) from e


def serialize_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a stored document with its ObjectId rendered as a string."""
    result = dict(document)
    if isinstance(result.get("_id"), ObjectId):
        result["_id"] = str(result["_id"])
    return result


class DocumentCollection:
    """Single-query operations on one collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    @property
    def name(self) -> str:
        return self.collection.name

    async def find_all(
        self,
        filter_query: Optional[Dict[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Find every document matching a filter.

        Args:
            filter_query: MongoDB filter (all documents when omitted)
            sort: List of (field, direction) pairs
            limit: Maximum number of documents to return

        Returns:
            Serialized documents
        """
        cursor = self.collection.find(filter_query or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        documents = await cursor.to_list(length=limit)
        return [serialize_document(doc) for doc in documents]

    async def find_one(self, filter_query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        document = await self.collection.find_one(filter_query)
        if document is None:
            return None
        return serialize_document(document)

    async def insert_one(self, document: Dict[str, Any]) -> str:
        """Insert a document and return its store-assigned id as a string."""
        result = await self.collection.insert_one(dict(document))
        logger.debug("Inserted document", collection=self.name, document_id=str(result.inserted_id))
        return str(result.inserted_id)

    async def update_one(self, filter_query: Dict[str, Any], partial: Dict[str, Any]) -> Tuple[int, int]:
        """
        Replace the given fields on the first matching document.

        Returns:
            (matched_count, modified_count)
        """
        result = await self.collection.update_one(filter_query, {"$set": partial})
        return result.matched_count, result.modified_count

    async def delete_one(self, filter_query: Dict[str, Any]) -> int:
        result = await self.collection.delete_one(filter_query)
        return result.deleted_count


class StoreClient:
    """
    Async MongoDB client shared by all requests.

    One instance is created per process, connected at application startup
    and closed at shutdown.
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        vehicles_collection: str = "vehicleDB",
        bookings_collection: str = "carBookings",
        connect_timeout_ms: int = 5000,
    ):
        """
        Initialize the store client.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            vehicles_collection: Name of the vehicle collection
            bookings_collection: Name of the booking collection
            connect_timeout_ms: Upper bound for server selection on connect
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.vehicles_collection = vehicles_collection
        self.bookings_collection = bookings_collection
        self.connect_timeout_ms = connect_timeout_ms
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self._vehicles: Optional[DocumentCollection] = None
        self._bookings: Optional[DocumentCollection] = None

    @classmethod
    def from_config(cls, config) -> "StoreClient":
        return cls(
            connection_url=config.get_mongodb_url(),
            database_name=config.mongodb_database,
            vehicles_collection=config.vehicles_collection,
            bookings_collection=config.bookings_collection,
            connect_timeout_ms=config.mongodb_connect_timeout_ms,
        )

    @property
    def is_connected(self) -> bool:
        return self.client is not None

    async def connect(self) -> None:
        """
        Establish the connection, verify it and create indexes.

        Raises:
            StoreConnectionError: If the deployment is unreachable within the timeout
        """
        if self.client is not None:
            return

        client = AsyncIOMotorClient(
            self.connection_url,
            server_api=ServerApi("1", strict=True, deprecation_errors=True),
            serverSelectionTimeoutMS=self.connect_timeout_ms,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            logger.error("Failed to connect to MongoDB", database=self.database_name, error=str(e))
            raise StoreConnectionError(f"MongoDB unreachable: {e}") from e

        self.client = client
        self.database = client[self.database_name]
        self._vehicles = DocumentCollection(self.database[self.vehicles_collection])
        self._bookings = DocumentCollection(self.database[self.bookings_collection])
        logger.info(
            "Successfully connected to MongoDB",
            database=self.database_name,
            vehicles_collection=self.vehicles_collection,
            bookings_collection=self.bookings_collection,
        )

        try:
            await self._create_indexes()
        except (PyMongoError, StoreConnectionError):
            await self.close()
            raise

    async def _create_indexes(self) -> None:
        """
        Create indexes for recency ordering, owner lookups and booking deduplication.
        """
        try:
            vehicles = self.database[self.vehicles_collection]
            bookings = self.database[self.bookings_collection]

            await vehicles.create_index([(CREATED_AT_FIELD, DESCENDING)])
            await vehicles.create_index(OWNER_FIELD)

            # One booking per (email, booking_id)
            try:
                await bookings.create_index(
                    [(BOOKING_EMAIL_FIELD, ASCENDING), (BOOKING_ID_FIELD, ASCENDING)],
                    unique=True,
                    name="unique_email_booking_id",
                )
            except OperationFailure as e:
                if e.code != DUPLICATE_KEY_CODE:
                    raise
                logger.error(
                    "Bookings collection holds duplicate (email, booking_id) pairs; "
                    "remove the duplicates before starting the server",
                    collection=self.bookings_collection,
                    error=str(e),
                )
                raise StoreConnectionError(
                    f"Cannot create unique booking index on {self.bookings_collection}: "
                    "existing duplicate bookings"
                ) from e

            logger.info("Successfully created MongoDB indexes")

        except PyMongoError as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def close(self) -> None:
        """Close the MongoDB connection."""
        if self.client:
            self.client.close()
            self.client = None
            self.database = None
            self._vehicles = None
            self._bookings = None
            logger.info("Disconnected from MongoDB")

    async def ping(self) -> bool:
        """Check that the deployment still answers."""
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("Database health check failed", error=str(e))
            return False

    def vehicles(self) -> DocumentCollection:
        if self._vehicles is None:
            raise StoreConnectionError("Store client is not connected")
        return self._vehicles

    def bookings(self) -> DocumentCollection:
        if self._bookings is None:
            raise StoreConnectionError("Store client is not connected")
        return self._bookings
