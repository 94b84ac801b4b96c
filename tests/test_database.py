"""
Unit tests for the MongoDB store client.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from travel_ease.database import (
    DocumentCollection,
    InvalidDocumentId,
    StoreClient,
    StoreConnectionError,
    parse_object_id,
    serialize_document,
)


def _motor_collection(documents=None):
    collection = MagicMock()
    collection.name = "vehicleDB"
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=documents or [])
    collection.find.return_value = cursor
    collection.find_one = AsyncMock()
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock()
    return collection, cursor


class TestDocumentCollection:
    """Test cases for DocumentCollection."""

    @pytest.mark.asyncio
    async def test_find_all_defaults_to_every_document(self):
        oid = ObjectId()
        collection, cursor = _motor_collection([{"_id": oid, "make": "Toyota"}])

        result = await DocumentCollection(collection).find_all()

        collection.find.assert_called_once_with({})
        cursor.sort.assert_not_called()
        cursor.limit.assert_not_called()
        assert result == [{"_id": str(oid), "make": "Toyota"}]

    @pytest.mark.asyncio
    async def test_find_all_with_sort_and_limit(self):
        collection, cursor = _motor_collection()

        await DocumentCollection(collection).find_all({"userEmail": "a@b.c"}, sort=[("createdAt", -1)], limit=6)

        collection.find.assert_called_once_with({"userEmail": "a@b.c"})
        cursor.sort.assert_called_once_with([("createdAt", -1)])
        cursor.limit.assert_called_once_with(6)
        cursor.to_list.assert_awaited_once_with(length=6)

    @pytest.mark.asyncio
    async def test_find_one_missing(self):
        collection, _ = _motor_collection()
        collection.find_one.return_value = None

        assert await DocumentCollection(collection).find_one({"_id": ObjectId()}) is None

    @pytest.mark.asyncio
    async def test_insert_one_returns_string_id(self):
        oid = ObjectId()
        collection, _ = _motor_collection()
        collection.insert_one.return_value = SimpleNamespace(inserted_id=oid)
        document = {"make": "Toyota"}

        inserted_id = await DocumentCollection(collection).insert_one(document)

        assert inserted_id == str(oid)
        # The caller's dict is not mutated with an _id
        assert "_id" not in document

    @pytest.mark.asyncio
    async def test_update_one_uses_set(self):
        collection, _ = _motor_collection()
        collection.update_one.return_value = SimpleNamespace(matched_count=1, modified_count=0)
        filter_query = {"_id": ObjectId()}

        result = await DocumentCollection(collection).update_one(filter_query, {"color": "red"})

        collection.update_one.assert_awaited_once_with(filter_query, {"$set": {"color": "red"}})
        assert result == (1, 0)

    @pytest.mark.asyncio
    async def test_delete_one_returns_count(self):
        collection, _ = _motor_collection()
        collection.delete_one.return_value = SimpleNamespace(deleted_count=0)

        assert await DocumentCollection(collection).delete_one({"_id": ObjectId()}) == 0


def test_parse_object_id():
    oid = ObjectId()
    assert parse_object_id(str(oid)) == oid

    with pytest.raises(InvalidDocumentId):
        parse_object_id("1234")


def test_serialize_document_leaves_input_untouched():
    oid = ObjectId()
    original = {"_id": oid, "nested": {"a": 1}}

    result = serialize_document(original)

    assert result["_id"] == str(oid)
    assert original["_id"] == oid


class TestStoreClient:
    """Test cases for StoreClient."""

    @pytest.fixture
    def motor_client(self):
        collections = {}

        def get_collection(name):
            if name not in collections:
                collection = MagicMock()
                collection.name = name
                collection.create_index = AsyncMock()
                collections[name] = collection
            return collections[name]

        database = MagicMock()
        database.__getitem__.side_effect = get_collection

        client = MagicMock()
        client.admin.command = AsyncMock(return_value={"ok": 1})
        client.__getitem__.return_value = database
        client.collections = collections
        return client

    @pytest.fixture
    def store_client(self):
        return StoreClient(
            connection_url="mongodb://localhost:27017",
            database_name="myDB",
            connect_timeout_ms=1500,
        )

    @pytest.mark.asyncio
    async def test_connect_pings_and_creates_indexes(self, store_client, motor_client):
        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client) as factory:
            await store_client.connect()

        _, kwargs = factory.call_args
        assert kwargs["serverSelectionTimeoutMS"] == 1500
        motor_client.admin.command.assert_awaited_with("ping")
        assert store_client.is_connected

        bookings = motor_client.collections["carBookings"]
        index_calls = bookings.create_index.await_args_list
        assert any(call.kwargs.get("unique") is True for call in index_calls)
        assert motor_client.collections["vehicleDB"].create_index.await_count == 2

        assert store_client.vehicles().name == "vehicleDB"
        assert store_client.bookings().name == "carBookings"

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, store_client, motor_client):
        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client) as factory:
            await store_client.connect()
            await store_client.connect()

        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_connect_unreachable(self, store_client, motor_client):
        motor_client.admin.command.side_effect = ServerSelectionTimeoutError("No servers found")

        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client):
            with pytest.raises(StoreConnectionError):
                await store_client.connect()

        motor_client.close.assert_called_once()
        assert not store_client.is_connected

    @pytest.mark.asyncio
    async def test_connect_fails_on_existing_duplicate_bookings(self, store_client, motor_client):
        bookings = motor_client[store_client.database_name]["carBookings"]
        bookings.create_index.side_effect = OperationFailure("E11000 duplicate key error", code=11000)

        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client):
            with pytest.raises(StoreConnectionError, match="existing duplicate bookings"):
                await store_client.connect()

        motor_client.close.assert_called_once()
        assert not store_client.is_connected

    @pytest.mark.asyncio
    async def test_connect_propagates_other_index_failures(self, store_client, motor_client):
        bookings = motor_client[store_client.database_name]["carBookings"]
        bookings.create_index.side_effect = OperationFailure("not authorized", code=13)

        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client):
            with pytest.raises(OperationFailure):
                await store_client.connect()

        assert not store_client.is_connected

    def test_handles_require_connection(self, store_client):
        with pytest.raises(StoreConnectionError):
            store_client.vehicles()
        with pytest.raises(StoreConnectionError):
            store_client.bookings()

    @pytest.mark.asyncio
    async def test_close(self, store_client, motor_client):
        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client):
            await store_client.connect()

        await store_client.close()
        await store_client.close()

        motor_client.close.assert_called_once()
        assert not store_client.is_connected

    @pytest.mark.asyncio
    async def test_ping(self, store_client, motor_client):
        assert await store_client.ping() is False

        with patch("travel_ease.database.AsyncIOMotorClient", return_value=motor_client):
            await store_client.connect()
        assert await store_client.ping() is True

        motor_client.admin.command.side_effect = ServerSelectionTimeoutError("gone")
        assert await store_client.ping() is False

    def test_from_config(self, api_config):
        store_client = StoreClient.from_config(api_config)

        assert store_client.connection_url == "mongodb://localhost:27017"
        assert store_client.database_name == "myDB"
        assert store_client.vehicles_collection == "vehicleDB"
        assert store_client.bookings_collection == "carBookings"
