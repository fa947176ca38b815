"""
Parcel query layer.

Read-side listings and single-parcel visibility rules. History entries
store only the actor's user id; names and emails are joined here when a
response is built. Nothing in this module writes.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.exceptions import InsufficientPermissionsError
from parcel_backend.app.models.enums import UserRole
from parcel_backend.app.models.parcel import Parcel
from parcel_backend.app.models.parcel_enums import ParcelStatus
from parcel_backend.app.schemas.parcel import ParcelResponse, RecipientResponse, StatusLogResponse
from parcel_backend.app.services import user_store
from parcel_backend.app.services.parcel_lifecycle import load_parcel, actor_role


def can_view_parcel(parcel: Parcel, viewer: Dict[str, Any]) -> bool:
    """
    Admins see every parcel. Anyone else must be the sender, the linked
    recipient or the assigned delivery man, whatever their current role.
    """
    if actor_role(viewer) == UserRole.ADMIN:
        return True

    return viewer["user_id"] in (parcel.sender_id, parcel.recipient_user_id, parcel.delivery_man_id)


async def get_parcel_by_id(db: AsyncSession, parcel_id: int, viewer: Dict[str, Any]) -> Parcel:
    parcel = await load_parcel(db, parcel_id)
    if not can_view_parcel(parcel, viewer):
        raise InsufficientPermissionsError("You are not authorized to view this parcel")
    return parcel


async def _paginate(db: AsyncSession, *criteria, page: int, page_size: int) -> Tuple[List[Parcel], int]:
    count_query = select(func.count(Parcel.id)).where(*criteria)
    total = (await db.execute(count_query)).scalar()

    offset = (page - 1) * page_size
    query = (
        select(Parcel)
        .where(*criteria)
        .order_by(Parcel.created_at.desc(), Parcel.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def get_parcels_by_sender(db: AsyncSession, sender_id: int, page: int = 1, page_size: int = 50):
    return await _paginate(db, Parcel.sender_id == sender_id, page=page, page_size=page_size)


async def get_parcels_by_receiver(db: AsyncSession, receiver_id: int, page: int = 1, page_size: int = 50):
    return await _paginate(db, Parcel.recipient_user_id == receiver_id, page=page, page_size=page_size)


async def get_parcels_by_delivery_man(db: AsyncSession, delivery_man_id: int, page: int = 1, page_size: int = 50):
    return await _paginate(db, Parcel.delivery_man_id == delivery_man_id, page=page, page_size=page_size)


async def get_all_parcels(
    db: AsyncSession,
    status: Optional[ParcelStatus] = None,
    page: int = 1,
    page_size: int = 50
):
    criteria = [Parcel.current_status == status] if status else []
    return await _paginate(db, *criteria, page=page, page_size=page_size)


async def to_parcel_responses(db: AsyncSession, parcels: Iterable[Parcel]) -> List[ParcelResponse]:
    """Build responses, joining history actors in a single lookup."""
    parcels = list(parcels)
    actor_ids = {
        entry.updated_by
        for parcel in parcels
        for entry in parcel.status_history
        if entry.updated_by is not None
    }
    actors = await user_store.find_many_by_ids(db, actor_ids)

    responses = []
    for parcel in parcels:
        history = []
        for entry in parcel.status_history:
            actor = actors.get(entry.updated_by)
            history.append(StatusLogResponse(
                status=entry.status,
                timestamp=entry.timestamp,
                updated_by=entry.updated_by,
                updated_by_name=actor.name if actor else None,
                updated_by_email=actor.email if actor else None,
                note=entry.note,
            ))

        responses.append(ParcelResponse(
            id=parcel.id,
            tracking_number=parcel.tracking_number,
            sender_id=parcel.sender_id,
            recipient=RecipientResponse(
                name=parcel.recipient_name,
                phone=parcel.recipient_phone,
                address=parcel.recipient_address,
                email=parcel.recipient_email,
                user_id=parcel.recipient_user_id,
            ),
            delivery_man_id=parcel.delivery_man_id,
            delivery_fee=parcel.delivery_fee,
            pickup_address=parcel.pickup_address,
            weight=parcel.weight,
            current_status=parcel.current_status,
            is_blocked=parcel.is_blocked,
            status_history=history,
            notes=parcel.notes,
            created_at=parcel.created_at,
            updated_at=parcel.updated_at,
        ))
    return responses


async def to_parcel_response(db: AsyncSession, parcel: Parcel) -> ParcelResponse:
    return (await to_parcel_responses(db, [parcel]))[0]
