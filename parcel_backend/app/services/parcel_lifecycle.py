"""
Parcel lifecycle engine.

Owns every mutation of a parcel: creation, assignment, delivery status
updates, cancellation and the admin overrides (confirm delivery, block,
unblock). Each mutation appends exactly one status history entry and is
persisted with an optimistic version check, so a parcel changed by another
request between our read and our write raises ConcurrentModificationError
instead of silently overwriting it.

Actors are the claims dictionaries produced by the authorization gate:
{"user_id": int, "email": str, "role": "ADMIN" | "USER" | "DELIVERY_MAN"}.
"""

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from parcel_backend.app.core.exceptions import (
    AppException,
    ConcurrentModificationError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    ParcelBlockedError,
    ResourceNotFoundError,
    ValidationError,
)
from parcel_backend.app.models.enums import UserRole, IsActive
from parcel_backend.app.models.parcel import Parcel, ParcelStatusLog
from parcel_backend.app.models.parcel_enums import (
    ParcelStatus,
    INITIAL_STATUS,
    ASSIGNMENT_TARGET,
    CANCELLATION_TARGET,
    can_transition,
    is_terminal,
)
from parcel_backend.app.schemas.parcel import ParcelCreate
from parcel_backend.app.services import user_store
from parcel_backend.app.services.audit import log_event, AuditAction
from parcel_backend.app.services.recipient_resolver import resolve_recipient

logger = logging.getLogger("parcel_backend")

TRACKING_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_SUFFIX_LENGTH = 6
TRACKING_NUMBER_ATTEMPTS = 5

Actor = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_tracking_number(now: Optional[datetime] = None) -> str:
    """Tracking number in the form TRK-YYYYMMDD-XXXXXX."""
    now = now or _utcnow()
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(TRACKING_SUFFIX_LENGTH))
    return f"TRK-{now:%Y%m%d}-{suffix}"


def actor_role(actor: Actor) -> UserRole:
    try:
        return UserRole(actor.get("role"))
    except ValueError:
        raise InsufficientPermissionsError("Invalid role in token")


def _require_admin(actor: Actor, action: str) -> None:
    if actor_role(actor) != UserRole.ADMIN:
        raise InsufficientPermissionsError(f"Only an admin can {action}")


async def _tracking_number_taken(db: AsyncSession, tracking_number: str) -> bool:
    result = await db.execute(select(Parcel.id).where(Parcel.tracking_number == tracking_number))
    return result.scalar_one_or_none() is not None


async def load_parcel(db: AsyncSession, parcel_id: int) -> Parcel:
    """Fetch a parcel with its history or raise ResourceNotFoundError."""
    result = await db.execute(select(Parcel).where(Parcel.id == parcel_id))
    parcel = result.scalar_one_or_none()
    if not parcel:
        raise ResourceNotFoundError("Parcel", parcel_id)
    return parcel


def _append_status(parcel: Parcel, status: ParcelStatus, actor_id: Optional[int], note: str) -> ParcelStatusLog:
    """Set the current status and append the matching history entry."""
    entry = ParcelStatusLog(
        sequence=len(parcel.status_history) + 1,
        status=status,
        timestamp=_utcnow(),
        updated_by=actor_id,
        note=note,
    )
    parcel.current_status = status
    parcel.status_history.append(entry)
    return entry


async def _persist(db: AsyncSession, parcel: Parcel) -> Parcel:
    # Rollback expires every instance; read the id while it is still loaded
    parcel_id = parcel.id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent modification detected on parcel %s", parcel_id)
        raise ConcurrentModificationError()
    await db.refresh(parcel)
    return parcel


def _ensure_not_blocked(parcel: Parcel) -> None:
    if parcel.is_blocked:
        raise ParcelBlockedError(parcel.tracking_number)


async def create_parcel(db: AsyncSession, sender_id: int, payload: ParcelCreate) -> Parcel:
    """
    Create a parcel booking for `sender_id`.

    Resolves the recipient, starts the parcel in PENDING with one history
    entry and assigns a fresh tracking number.
    """
    recipient = await resolve_recipient(db, payload.recipient)

    for _ in range(TRACKING_NUMBER_ATTEMPTS):
        tracking_number = generate_tracking_number()
        if await _tracking_number_taken(db, tracking_number):
            continue

        parcel = Parcel(
            tracking_number=tracking_number,
            sender_id=sender_id,
            recipient_name=recipient.name,
            recipient_phone=recipient.phone,
            recipient_address=recipient.address,
            recipient_email=recipient.email,
            recipient_user_id=recipient.user_id,
            weight=payload.weight,
            delivery_fee=payload.delivery_fee,
            pickup_address=payload.pickup_address,
            notes=payload.notes,
            is_blocked=False,
            status_history=[],
        )
        _append_status(parcel, INITIAL_STATUS, sender_id, "Parcel booking created by sender.")
        db.add(parcel)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Another booking took the number between the check and the insert
            if not await _tracking_number_taken(db, tracking_number):
                raise
            logger.warning("Tracking number %s collided on insert, regenerating", tracking_number)
            continue

        await db.refresh(parcel)
        logger.info("Parcel %s created by user %s", parcel.tracking_number, sender_id)
        return parcel

    raise AppException("Could not allocate a tracking number", "ERR_TRACKING_001")


async def assign_delivery_man(db: AsyncSession, parcel_id: int, delivery_man_id: int, admin: Actor) -> Parcel:
    """
    Assign a delivery man to a PENDING parcel.

    Assignment and pickup are one step: the parcel moves to PICKED_UP.
    """
    _require_admin(admin, "assign a delivery man")
    parcel = await load_parcel(db, parcel_id)

    candidate = await user_store.find_by_id(db, delivery_man_id)
    if not candidate:
        raise ResourceNotFoundError("Delivery man", delivery_man_id)
    if candidate.role != UserRole.DELIVERY_MAN:
        raise ValidationError("Assigned user is not a delivery man", path="delivery_man_id")
    if candidate.is_active != IsActive.ACTIVE:
        raise ValidationError(f"Delivery man account is {candidate.is_active.value}", path="delivery_man_id")

    _ensure_not_blocked(parcel)
    if parcel.current_status != INITIAL_STATUS:
        raise IllegalTransitionError(
            parcel.current_status,
            ASSIGNMENT_TARGET,
            f"Can only assign a delivery man to a PENDING parcel, current status: {parcel.current_status.value}"
        )

    previous = parcel.current_status
    parcel.delivery_man_id = candidate.id
    _append_status(
        parcel,
        ASSIGNMENT_TARGET,
        admin["user_id"],
        f"Assigned to delivery man {candidate.name} by admin.",
    )
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s: %s -> %s (assigned to %s)", parcel.tracking_number, previous.value, parcel.current_status.value, candidate.id)
    await log_event(
        db=db,
        action=AuditAction.PARCEL_ASSIGNED,
        actor_id=admin["user_id"],
        actor_email=admin.get("email"),
        target_user_id=candidate.id,
        target_email=candidate.email,
        metadata={"parcel_id": parcel.id, "tracking_number": parcel.tracking_number}
    )
    return parcel


async def update_delivery_status(
    db: AsyncSession,
    parcel_id: int,
    new_status: ParcelStatus,
    actor: Actor,
    note: Optional[str] = None
) -> Parcel:
    """
    Move a parcel along its delivery path.

    Allowed for the assigned delivery man or an admin. PENDING parcels only
    leave PENDING through assignment or cancellation.
    """
    parcel = await load_parcel(db, parcel_id)
    role = actor_role(actor)

    if role == UserRole.ADMIN:
        pass
    elif role == UserRole.DELIVERY_MAN:
        if parcel.delivery_man_id != actor["user_id"]:
            raise InsufficientPermissionsError("You are not assigned to this parcel")
    elif role == UserRole.USER:
        raise InsufficientPermissionsError("Only the assigned delivery man or an admin can update delivery status")
    else:
        raise InsufficientPermissionsError("Unsupported role")

    _ensure_not_blocked(parcel)
    previous = parcel.current_status
    if previous == INITIAL_STATUS:
        raise IllegalTransitionError(
            previous,
            new_status,
            "A PENDING parcel changes status only through assignment or cancellation"
        )
    if not can_transition(previous, new_status):
        raise IllegalTransitionError(previous, new_status)

    _append_status(
        parcel,
        new_status,
        actor["user_id"],
        note or f"Status updated to {new_status.value} by {role.value}.",
    )
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s: %s -> %s by %s %s", parcel.tracking_number, previous.value, new_status.value, role.value, actor["user_id"])
    await log_event(
        db=db,
        action=AuditAction.PARCEL_STATUS_UPDATED,
        actor_id=actor["user_id"],
        actor_email=actor.get("email"),
        metadata={
            "parcel_id": parcel.id,
            "from": previous.value,
            "to": new_status.value,
            "actor_role": role.value
        }
    )
    return parcel


async def cancel_parcel(db: AsyncSession, parcel_id: int, actor: Actor) -> Parcel:
    """Cancel a PENDING parcel. Only its sender or an admin may do so."""
    parcel = await load_parcel(db, parcel_id)
    role = actor_role(actor)

    if role == UserRole.ADMIN:
        note = "Parcel cancelled by admin."
    elif role == UserRole.USER:
        if parcel.sender_id != actor["user_id"]:
            raise InsufficientPermissionsError("You are not authorized to cancel this parcel")
        note = "Parcel cancelled by sender."
    elif role == UserRole.DELIVERY_MAN:
        raise InsufficientPermissionsError("Delivery men cannot cancel parcels")
    else:
        raise InsufficientPermissionsError("Unsupported role")

    _ensure_not_blocked(parcel)
    previous = parcel.current_status
    if previous != INITIAL_STATUS:
        raise IllegalTransitionError(
            previous,
            CANCELLATION_TARGET,
            f"Parcel cannot be cancelled once it is {previous.value}"
        )

    _append_status(parcel, CANCELLATION_TARGET, actor["user_id"], note)
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s cancelled by %s %s", parcel.tracking_number, role.value, actor["user_id"])
    await log_event(
        db=db,
        action=AuditAction.PARCEL_CANCELLED,
        actor_id=actor["user_id"],
        actor_email=actor.get("email"),
        metadata={"parcel_id": parcel.id, "actor_role": role.value}
    )
    return parcel


async def confirm_delivery(db: AsyncSession, parcel_id: int, admin: Actor, note: Optional[str] = None) -> Parcel:
    """Admin override marking a picked up or in-transit parcel DELIVERED."""
    _require_admin(admin, "confirm a delivery")
    parcel = await load_parcel(db, parcel_id)

    _ensure_not_blocked(parcel)
    previous = parcel.current_status
    if not can_transition(previous, ParcelStatus.DELIVERED):
        raise IllegalTransitionError(previous, ParcelStatus.DELIVERED)

    _append_status(parcel, ParcelStatus.DELIVERED, admin["user_id"], note or "Delivery confirmed by admin.")
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s: %s -> DELIVERED confirmed by admin %s", parcel.tracking_number, previous.value, admin["user_id"])
    await log_event(
        db=db,
        action=AuditAction.PARCEL_DELIVERY_CONFIRMED,
        actor_id=admin["user_id"],
        actor_email=admin.get("email"),
        metadata={"parcel_id": parcel.id, "from": previous.value}
    )
    return parcel


async def block_parcel(db: AsyncSession, parcel_id: int, admin: Actor, note: Optional[str] = None) -> Parcel:
    """
    Put an administrative hold on a parcel.

    The status is unchanged; the hold is recorded as a history entry that
    repeats the current status.
    """
    _require_admin(admin, "block a parcel")
    parcel = await load_parcel(db, parcel_id)

    if is_terminal(parcel.current_status):
        raise IllegalTransitionError(
            parcel.current_status,
            parcel.current_status,
            f"Cannot block a parcel that is already {parcel.current_status.value}"
        )
    if parcel.is_blocked:
        raise ValidationError("Parcel is already blocked", path="isBlocked")

    parcel.is_blocked = True
    _append_status(
        parcel,
        parcel.current_status,
        admin["user_id"],
        f"Parcel blocked by admin. {note}" if note else "Parcel blocked by admin.",
    )
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s blocked by admin %s", parcel.tracking_number, admin["user_id"])
    await log_event(
        db=db,
        action=AuditAction.PARCEL_BLOCKED,
        actor_id=admin["user_id"],
        actor_email=admin.get("email"),
        metadata={"parcel_id": parcel.id, "reason": note}
    )
    return parcel


async def unblock_parcel(db: AsyncSession, parcel_id: int, admin: Actor, note: Optional[str] = None) -> Parcel:
    """Lift an administrative hold."""
    _require_admin(admin, "unblock a parcel")
    parcel = await load_parcel(db, parcel_id)

    if not parcel.is_blocked:
        raise ValidationError("Parcel is not blocked", path="isBlocked")

    parcel.is_blocked = False
    _append_status(
        parcel,
        parcel.current_status,
        admin["user_id"],
        f"Parcel unblocked by admin. {note}" if note else "Parcel unblocked by admin.",
    )
    parcel = await _persist(db, parcel)

    logger.info("Parcel %s unblocked by admin %s", parcel.tracking_number, admin["user_id"])
    await log_event(
        db=db,
        action=AuditAction.PARCEL_UNBLOCKED,
        actor_id=admin["user_id"],
        actor_email=admin.get("email"),
        metadata={"parcel_id": parcel.id, "reason": note}
    )
    return parcel
