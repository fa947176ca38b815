"""
Parcel API endpoints.

Senders book and cancel parcels, delivery men move them along the delivery
path, admins assign, confirm, block and unblock. All state changes go
through the parcel lifecycle service; this module only maps HTTP to it.
"""

from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.guards import require_admin, require_any_role, require_role
from parcel_backend.app.db.session import get_db
from parcel_backend.app.models.enums import UserRole
from parcel_backend.app.models.parcel_enums import ParcelStatus
from parcel_backend.app.schemas.common import MAX_ID, ApiResponse, PageMeta
from parcel_backend.app.schemas.parcel import (
    AdminParcelAction,
    AssignDeliveryMan,
    ParcelCreate,
    ParcelResponse,
    UpdateDeliveryStatus,
)
from parcel_backend.app.services import parcel_lifecycle, parcel_queries

router = APIRouter(prefix="/parcels", tags=["Parcels"])


async def _page_response(db: AsyncSession, message: str, parcels, total: int, page: int, page_size: int):
    return ApiResponse(
        message=message,
        data=await parcel_queries.to_parcel_responses(db, parcels),
        meta=PageMeta(total=total, page=page, page_size=page_size)
    )


@router.post("/", response_model=ApiResponse[ParcelResponse], status_code=status.HTTP_201_CREATED)
async def create_parcel(
    parcel_data: ParcelCreate,
    current_user: dict = Depends(require_role([UserRole.USER])),
    db: AsyncSession = Depends(get_db)
):
    """
    Book a new parcel (sender only).

    The recipient is either a registered user (`recipient.user_id`) or
    given manually as name, phone and address.
    """
    parcel = await parcel_lifecycle.create_parcel(db, current_user["user_id"], parcel_data)
    return ApiResponse(
        message="Parcel created successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.get("/me", response_model=ApiResponse[List[ParcelResponse]])
async def my_parcels(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_role([UserRole.USER])),
    db: AsyncSession = Depends(get_db)
):
    """Parcels sent by the caller."""
    parcels, total = await parcel_queries.get_parcels_by_sender(db, current_user["user_id"], page, page_size)
    return await _page_response(db, "Your parcels retrieved successfully", parcels, total, page, page_size)


@router.get("/incoming", response_model=ApiResponse[List[ParcelResponse]])
async def incoming_parcels(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_role([UserRole.USER])),
    db: AsyncSession = Depends(get_db)
):
    """Parcels addressed to the caller as a registered recipient."""
    parcels, total = await parcel_queries.get_parcels_by_receiver(db, current_user["user_id"], page, page_size)
    return await _page_response(db, "Incoming parcels retrieved successfully", parcels, total, page, page_size)


@router.get("/my-deliveries", response_model=ApiResponse[List[ParcelResponse]])
async def my_deliveries(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_role([UserRole.DELIVERY_MAN])),
    db: AsyncSession = Depends(get_db)
):
    """Parcels assigned to the calling delivery man."""
    parcels, total = await parcel_queries.get_parcels_by_delivery_man(db, current_user["user_id"], page, page_size)
    return await _page_response(db, "Assigned parcels retrieved successfully", parcels, total, page, page_size)


@router.get("/all", response_model=ApiResponse[List[ParcelResponse]])
async def all_parcels(
    status_filter: Optional[ParcelStatus] = Query(None, alias="status", description="Filter by current status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Every parcel in the system (admin-only)."""
    parcels, total = await parcel_queries.get_all_parcels(db, status_filter, page, page_size)
    return await _page_response(db, "All parcels retrieved successfully", parcels, total, page, page_size)


@router.get("/{parcel_id}", response_model=ApiResponse[ParcelResponse])
async def get_parcel(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    current_user: dict = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    """
    Get a single parcel.

    Visible to admins, its sender, its registered recipient and its
    assigned delivery man.
    """
    parcel = await parcel_queries.get_parcel_by_id(db, parcel_id, current_user)
    return ApiResponse(
        message="Parcel retrieved successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/cancel", response_model=ApiResponse[ParcelResponse])
async def cancel_parcel(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    current_user: dict = Depends(require_role([UserRole.USER, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a PENDING parcel (its sender or an admin)."""
    parcel = await parcel_lifecycle.cancel_parcel(db, parcel_id, current_user)
    return ApiResponse(
        message="Parcel cancelled successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/assign", response_model=ApiResponse[ParcelResponse])
async def assign_delivery_man(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    assignment: AssignDeliveryMan = ...,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Assign a delivery man to a PENDING parcel (admin-only).

    The parcel is marked PICKED_UP in the same step.
    """
    parcel = await parcel_lifecycle.assign_delivery_man(db, parcel_id, assignment.delivery_man_id, admin)
    return ApiResponse(
        message="Delivery man assigned successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/update-delivery-status", response_model=ApiResponse[ParcelResponse])
async def update_delivery_status(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    update: UpdateDeliveryStatus = ...,
    current_user: dict = Depends(require_role([UserRole.DELIVERY_MAN, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Advance a parcel along PICKED_UP -> IN_TRANSIT -> DELIVERED."""
    parcel = await parcel_lifecycle.update_delivery_status(
        db, parcel_id, update.status, current_user, note=update.note
    )
    return ApiResponse(
        message=f"Parcel status updated to {parcel.current_status.value}",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/confirm-delivery", response_model=ApiResponse[ParcelResponse])
async def confirm_delivery(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    action: Optional[AdminParcelAction] = Body(None),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Mark a parcel DELIVERED (admin-only)."""
    parcel = await parcel_lifecycle.confirm_delivery(db, parcel_id, admin, note=action.note if action else None)
    return ApiResponse(
        message="Parcel delivery confirmed",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/block", response_model=ApiResponse[ParcelResponse])
async def block_parcel(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    action: Optional[AdminParcelAction] = Body(None),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Put a parcel on hold (admin-only)."""
    parcel = await parcel_lifecycle.block_parcel(db, parcel_id, admin, note=action.note if action else None)
    return ApiResponse(
        message="Parcel blocked successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )


@router.patch("/{parcel_id}/unblock", response_model=ApiResponse[ParcelResponse])
async def unblock_parcel(
    parcel_id: int = Path(..., ge=1, le=MAX_ID, description="Parcel ID"),
    action: Optional[AdminParcelAction] = Body(None),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Lift a hold on a parcel (admin-only)."""
    parcel = await parcel_lifecycle.unblock_parcel(db, parcel_id, admin, note=action.note if action else None)
    return ApiResponse(
        message="Parcel unblocked successfully",
        data=await parcel_queries.to_parcel_response(db, parcel)
    )
