"""
Route handlers for vehicles and car bookings.

Each handler performs a single store operation and maps its outcome to an
HTTP response. Store failures are logged with detail and surfaced as a
generic 500.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from travel_ease.auth import get_current_user
from travel_ease.database import (
    BOOKING_EMAIL_FIELD,
    BOOKING_ID_FIELD,
    CREATED_AT_FIELD,
    OWNER_FIELD,
    InvalidDocumentId,
    StoreClient,
    StoreConnectionError,
    parse_object_id,
)
from travel_ease.models import AuthenticatedUser, DeleteResponse, InsertResponse, UpdateResponse

logger = structlog.get_logger(__name__)

router = APIRouter()

DUPLICATE_BOOKING_MESSAGE = "You already booked this car."

STORE_ERRORS = (PyMongoError, StoreConnectionError)

# Set by the server, never by a request body
PROTECTED_VEHICLE_FIELDS = frozenset({"_id", OWNER_FIELD, CREATED_AT_FIELD})


def get_store(request: Request) -> StoreClient:
    """Return the process-wide store client attached at startup."""
    return request.app.state.store


def _store_failure(action: str, error: Exception, **context) -> HTTPException:
    logger.error(f"Failed to {action}", error=str(error), **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


def _not_found(kind: str, document_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{kind} with ID '{document_id}' not found",
    )


def _id_filter(kind: str, document_id: str) -> Dict[str, Any]:
    try:
        return {"_id": parse_object_id(document_id)}
    except InvalidDocumentId:
        raise _not_found(kind, document_id)


def _vehicle_filter(request: Request, vehicle_id: str, user: AuthenticatedUser) -> Dict[str, Any]:
    filter_query = _id_filter("Vehicle", vehicle_id)
    if request.app.state.config.enforce_vehicle_ownership:
        filter_query[OWNER_FIELD] = user.email
    return filter_query


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Vehicles endpoints
@router.get("/all-vehicles", tags=["Vehicles"])
async def list_vehicles(store: StoreClient = Depends(get_store)) -> List[Dict[str, Any]]:
    """Get every vehicle listing."""
    try:
        return await store.vehicles().find_all()
    except STORE_ERRORS as e:
        raise _store_failure("fetch vehicles", e)


@router.get("/latest-vehicles", tags=["Vehicles"])
async def latest_vehicles(request: Request, store: StoreClient = Depends(get_store)) -> List[Dict[str, Any]]:
    """Get the most recently created vehicles, newest first."""
    limit = request.app.state.config.latest_vehicles_limit
    try:
        return await store.vehicles().find_all(
            sort=[(CREATED_AT_FIELD, DESCENDING)],
            limit=limit,
        )
    except STORE_ERRORS as e:
        raise _store_failure("fetch latest vehicles", e)


@router.post("/all-vehicles", status_code=status.HTTP_201_CREATED, response_model=InsertResponse, tags=["Vehicles"])
async def create_vehicle(
    vehicle: Dict[str, Any] = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
):
    """
    Create a vehicle listing.

    The body is stored as given, except that the owner email and creation
    time always come from the caller and the clock.
    """
    document = dict(vehicle)
    document.pop("_id", None)
    document[OWNER_FIELD] = user.email
    document[CREATED_AT_FIELD] = _utcnow()

    try:
        inserted_id = await store.vehicles().insert_one(document)
    except STORE_ERRORS as e:
        raise _store_failure("create vehicle", e, owner=user.email)

    logger.info("Vehicle created", vehicle_id=inserted_id, owner=user.email)
    return InsertResponse(insertedId=inserted_id)


@router.get("/my-vehicles", tags=["Vehicles"])
async def my_vehicles(
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Get the vehicles owned by the authenticated caller."""
    try:
        return await store.vehicles().find_all({OWNER_FIELD: user.email})
    except STORE_ERRORS as e:
        raise _store_failure("fetch your vehicles", e, owner=user.email)


@router.get("/all-vehicles/{vehicle_id}", tags=["Vehicles"])
async def get_vehicle(
    vehicle_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
) -> Dict[str, Any]:
    """Get a single vehicle by ID."""
    filter_query = _id_filter("Vehicle", vehicle_id)
    try:
        vehicle = await store.vehicles().find_one(filter_query)
    except STORE_ERRORS as e:
        raise _store_failure("fetch vehicle", e, vehicle_id=vehicle_id)

    if vehicle is None:
        raise _not_found("Vehicle", vehicle_id)
    return vehicle


@router.put("/all-vehicles/{vehicle_id}", response_model=UpdateResponse, tags=["Vehicles"])
async def update_vehicle(
    request: Request,
    vehicle_id: str,
    changes: Dict[str, Any] = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
):
    """Replace the given fields of a vehicle. Owner and creation time cannot be changed."""
    partial = {key: value for key, value in changes.items() if key not in PROTECTED_VEHICLE_FIELDS}
    if not partial:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Update body must contain at least one field",
        )

    filter_query = _vehicle_filter(request, vehicle_id, user)
    try:
        matched, modified = await store.vehicles().update_one(filter_query, partial)
    except STORE_ERRORS as e:
        raise _store_failure("update vehicle", e, vehicle_id=vehicle_id)

    if matched == 0:
        raise _not_found("Vehicle", vehicle_id)

    logger.info("Vehicle updated", vehicle_id=vehicle_id, by=user.email, modified=modified)
    return UpdateResponse(matchedCount=matched, modifiedCount=modified)


@router.delete("/all-vehicles/{vehicle_id}", response_model=DeleteResponse, tags=["Vehicles"])
async def delete_vehicle(
    request: Request,
    vehicle_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
):
    """Delete a vehicle by ID."""
    filter_query = _vehicle_filter(request, vehicle_id, user)
    try:
        deleted = await store.vehicles().delete_one(filter_query)
    except STORE_ERRORS as e:
        raise _store_failure("delete vehicle", e, vehicle_id=vehicle_id)

    if deleted == 0:
        raise _not_found("Vehicle", vehicle_id)

    logger.info("Vehicle deleted", vehicle_id=vehicle_id, by=user.email)
    return DeleteResponse(message="Vehicle deleted successfully", deletedCount=deleted)


# Bookings endpoints
@router.post("/car-bookings", status_code=status.HTTP_201_CREATED, response_model=InsertResponse, tags=["Bookings"])
async def create_booking(
    booking: Dict[str, Any] = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
):
    """
    Book a car.

    At most one booking may exist per (email, booking_id). The lookup gives
    the common case a clean 409; the unique index rejects a concurrent
    duplicate that slips past it.
    """
    missing = [f for f in (BOOKING_EMAIL_FIELD, BOOKING_ID_FIELD) if booking.get(f) in (None, "")]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required booking fields: {', '.join(missing)}",
        )

    # A booking is always made for the caller
    if str(booking[BOOKING_EMAIL_FIELD]).strip().lower() != user.email.lower():
        logger.warning("Booking email does not match caller", requested_by=user.email)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Booking email must match the authenticated user",
        )

    document = dict(booking)
    document.pop("_id", None)
    document[BOOKING_EMAIL_FIELD] = user.email
    document[CREATED_AT_FIELD] = _utcnow()
    key = {
        BOOKING_EMAIL_FIELD: document[BOOKING_EMAIL_FIELD],
        BOOKING_ID_FIELD: document[BOOKING_ID_FIELD],
    }

    try:
        bookings = store.bookings()
        if await bookings.find_one(key) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_BOOKING_MESSAGE)
        inserted_id = await bookings.insert_one(document)
    except DuplicateKeyError:
        logger.warning("Concurrent duplicate booking rejected", **key)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=DUPLICATE_BOOKING_MESSAGE)
    except STORE_ERRORS as e:
        raise _store_failure("create booking", e, **key)

    logger.info("Booking created", booking_document_id=inserted_id, requested_by=user.email, **key)
    return InsertResponse(insertedId=inserted_id)


@router.get("/car-bookings", tags=["Bookings"])
async def my_bookings(
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Get the bookings made with the authenticated caller's email."""
    try:
        return await store.bookings().find_all({BOOKING_EMAIL_FIELD: user.email})
    except STORE_ERRORS as e:
        raise _store_failure("fetch bookings", e, email=user.email)


@router.delete("/car-bookings/{booking_id}", response_model=DeleteResponse, tags=["Bookings"])
async def delete_booking(
    booking_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store: StoreClient = Depends(get_store),
):
    """Cancel a booking by its store ID."""
    filter_query = _id_filter("Booking", booking_id)
    try:
        deleted = await store.bookings().delete_one(filter_query)
    except STORE_ERRORS as e:
        raise _store_failure("delete booking", e, booking_document_id=booking_id)

    if deleted == 0:
        raise _not_found("Booking", booking_id)

    logger.info("Booking deleted", booking_document_id=booking_id, by=user.email)
    return DeleteResponse(message="Booking deleted successfully", deletedCount=deleted)
