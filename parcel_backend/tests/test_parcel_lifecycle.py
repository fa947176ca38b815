"""
Service-level tests for the parcel lifecycle engine.

Covers the transition rules, the history invariant, block/unblock holds
and optimistic concurrency on parcel updates.
"""

import pytest
from sqlalchemy import select, update

from parcel_backend.app.core.exceptions import (
    ConcurrentModificationError,
    IllegalTransitionError,
    InsufficientPermissionsError,
    ParcelBlockedError,
    ResourceNotFoundError,
    ValidationError,
)
from parcel_backend.app.models.audit_log import AuditLog
from parcel_backend.app.models.enums import IsActive, UserRole
from parcel_backend.app.models.parcel import Parcel
from parcel_backend.app.models.parcel_enums import ParcelStatus
from parcel_backend.app.schemas.parcel import ParcelCreate
from parcel_backend.app.services import parcel_lifecycle, user_store
from parcel_backend.app.services.audit import AuditAction


def as_actor(user):
    return {"user_id": user.id, "email": user.email, "role": user.role.value}


@pytest.fixture
async def people(db_session):
    async def create(name, email, role):
        return await user_store.create_user(db_session, name=name, email=email, password="Secret@123", role=role)

    return {
        "admin": await create("Admin", "admin@mail.com", UserRole.ADMIN),
        "sender": await create("Sam Sender", "sender@mail.com", UserRole.USER),
        "stranger": await create("Other User", "other@mail.com", UserRole.USER),
        "rider": await create("Dan Rider", "rider@mail.com", UserRole.DELIVERY_MAN),
        "rider2": await create("Dora Rider", "rider2@mail.com", UserRole.DELIVERY_MAN),
    }


@pytest.fixture
def booking():
    return ParcelCreate(
        recipient={"name": "Walk In", "phone": "+8801711111111", "address": "9 Unknown Street"},
        weight=1.5,
        delivery_fee=120,
        pickup_address="1 Sender Road",
    )


async def _assert_history_consistent(parcel):
    assert parcel.status_history, "history must never be empty"
    assert parcel.current_status == parcel.status_history[-1].status
    assert [entry.sequence for entry in parcel.status_history] == list(range(1, len(parcel.status_history) + 1))


@pytest.fixture
async def picked_up(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)
    return await parcel_lifecycle.assign_delivery_man(
        db_session, parcel.id, people["rider"].id, as_actor(people["admin"])
    )


@pytest.mark.asyncio
async def test_create_parcel_starts_pending(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)

    assert parcel.current_status == ParcelStatus.PENDING
    assert parcel.is_blocked is False
    assert parcel.delivery_man_id is None
    assert parcel.tracking_number.startswith("TRK-")
    assert len(parcel.status_history) == 1
    assert parcel.status_history[0].updated_by == people["sender"].id
    assert parcel.status_history[0].note == "Parcel booking created by sender."
    await _assert_history_consistent(parcel)


@pytest.mark.asyncio
async def test_assignment_moves_parcel_to_picked_up(db_session, people, picked_up):
    assert picked_up.current_status == ParcelStatus.PICKED_UP
    assert picked_up.delivery_man_id == people["rider"].id
    assert len(picked_up.status_history) == 2
    assert picked_up.status_history[-1].updated_by == people["admin"].id
    await _assert_history_consistent(picked_up)

    logs = (await db_session.execute(
        select(AuditLog).where(AuditLog.action == AuditAction.PARCEL_ASSIGNED)
    )).scalars().all()
    assert len(logs) == 1
    assert logs[0].target_user_id == people["rider"].id


@pytest.mark.asyncio
async def test_assignment_requires_a_delivery_man(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)
    admin = as_actor(people["admin"])

    with pytest.raises(ValidationError):
        await parcel_lifecycle.assign_delivery_man(db_session, parcel.id, people["stranger"].id, admin)

    with pytest.raises(ResourceNotFoundError):
        await parcel_lifecycle.assign_delivery_man(db_session, parcel.id, 999, admin)

    people["rider"].is_active = IsActive.BLOCKED
    await user_store.save_user(db_session, people["rider"])
    with pytest.raises(ValidationError):
        await parcel_lifecycle.assign_delivery_man(db_session, parcel.id, people["rider"].id, admin)


@pytest.mark.asyncio
async def test_only_admin_can_assign(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)
    with pytest.raises(InsufficientPermissionsError):
        await parcel_lifecycle.assign_delivery_man(
            db_session, parcel.id, people["rider"].id, as_actor(people["sender"])
        )


@pytest.mark.asyncio
async def test_reassignment_is_rejected(db_session, people, picked_up):
    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.assign_delivery_man(
            db_session, picked_up.id, people["rider2"].id, as_actor(people["admin"])
        )


@pytest.mark.asyncio
async def test_delivery_path(db_session, people, picked_up):
    rider = as_actor(people["rider"])

    parcel = await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.IN_TRANSIT, rider)
    assert parcel.current_status == ParcelStatus.IN_TRANSIT

    parcel = await parcel_lifecycle.update_delivery_status(
        db_session, picked_up.id, ParcelStatus.DELIVERED, rider, note="Left with the concierge"
    )
    assert parcel.current_status == ParcelStatus.DELIVERED
    assert parcel.status_history[-1].note == "Left with the concierge"
    assert len(parcel.status_history) == 4
    await _assert_history_consistent(parcel)


@pytest.mark.asyncio
async def test_in_transit_parcel_can_be_returned(db_session, people, picked_up):
    rider = as_actor(people["rider"])
    await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.IN_TRANSIT, rider)
    parcel = await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.RETURNED, rider)
    assert parcel.current_status == ParcelStatus.RETURNED


@pytest.mark.asyncio
async def test_illegal_transition_leaves_parcel_untouched(db_session, people, picked_up):
    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.update_delivery_status(
            db_session, picked_up.id, ParcelStatus.RETURNED, as_actor(people["rider"])
        )

    parcel = await parcel_lifecycle.load_parcel(db_session, picked_up.id)
    assert parcel.current_status == ParcelStatus.PICKED_UP
    assert len(parcel.status_history) == 2


@pytest.mark.asyncio
async def test_terminal_parcel_accepts_nothing(db_session, people, picked_up):
    rider = as_actor(people["rider"])
    await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.DELIVERED, rider)

    for target in ParcelStatus:
        with pytest.raises(IllegalTransitionError):
            await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, target, rider)


@pytest.mark.asyncio
async def test_pending_parcel_cannot_be_advanced_by_status_update(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)
    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.update_delivery_status(
            db_session, parcel.id, ParcelStatus.PICKED_UP, as_actor(people["admin"])
        )


@pytest.mark.asyncio
async def test_status_update_ownership(db_session, people, picked_up):
    with pytest.raises(InsufficientPermissionsError) as exc:
        await parcel_lifecycle.update_delivery_status(
            db_session, picked_up.id, ParcelStatus.IN_TRANSIT, as_actor(people["rider2"])
        )
    assert exc.value.message == "You are not assigned to this parcel"

    with pytest.raises(InsufficientPermissionsError):
        await parcel_lifecycle.update_delivery_status(
            db_session, picked_up.id, ParcelStatus.IN_TRANSIT, as_actor(people["sender"])
        )

    parcel = await parcel_lifecycle.update_delivery_status(
        db_session, picked_up.id, ParcelStatus.IN_TRANSIT, as_actor(people["admin"])
    )
    assert parcel.current_status == ParcelStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_sender_cancels_pending_parcel(db_session, people, booking):
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)

    with pytest.raises(InsufficientPermissionsError) as exc:
        await parcel_lifecycle.cancel_parcel(db_session, parcel.id, as_actor(people["stranger"]))
    assert exc.value.message == "You are not authorized to cancel this parcel"

    with pytest.raises(InsufficientPermissionsError):
        await parcel_lifecycle.cancel_parcel(db_session, parcel.id, as_actor(people["rider"]))

    parcel = await parcel_lifecycle.cancel_parcel(db_session, parcel.id, as_actor(people["sender"]))
    assert parcel.current_status == ParcelStatus.CANCELLED
    await _assert_history_consistent(parcel)

    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.cancel_parcel(db_session, parcel.id, as_actor(people["sender"]))


@pytest.mark.asyncio
async def test_picked_up_parcel_cannot_be_cancelled(db_session, people, picked_up):
    for actor in (people["sender"], people["admin"]):
        with pytest.raises(IllegalTransitionError):
            await parcel_lifecycle.cancel_parcel(db_session, picked_up.id, as_actor(actor))


@pytest.mark.asyncio
async def test_admin_confirms_delivery(db_session, people, picked_up):
    parcel = await parcel_lifecycle.confirm_delivery(db_session, picked_up.id, as_actor(people["admin"]))
    assert parcel.current_status == ParcelStatus.DELIVERED
    assert parcel.status_history[-1].note == "Delivery confirmed by admin."

    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.confirm_delivery(db_session, picked_up.id, as_actor(people["admin"]))


@pytest.mark.asyncio
async def test_confirm_delivery_is_admin_only(db_session, people, picked_up):
    with pytest.raises(InsufficientPermissionsError):
        await parcel_lifecycle.confirm_delivery(db_session, picked_up.id, as_actor(people["rider"]))


@pytest.mark.asyncio
async def test_block_holds_the_parcel(db_session, people, picked_up):
    admin = as_actor(people["admin"])
    rider = as_actor(people["rider"])

    parcel = await parcel_lifecycle.block_parcel(db_session, picked_up.id, admin, note="Address check")
    assert parcel.is_blocked is True
    assert parcel.current_status == ParcelStatus.PICKED_UP
    assert parcel.status_history[-1].status == ParcelStatus.PICKED_UP
    assert parcel.status_history[-1].note == "Parcel blocked by admin. Address check"
    await _assert_history_consistent(parcel)

    with pytest.raises(ParcelBlockedError):
        await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.IN_TRANSIT, rider)
    with pytest.raises(ParcelBlockedError):
        await parcel_lifecycle.confirm_delivery(db_session, picked_up.id, admin)
    with pytest.raises(ValidationError):
        await parcel_lifecycle.block_parcel(db_session, picked_up.id, admin)

    parcel = await parcel_lifecycle.unblock_parcel(db_session, picked_up.id, admin)
    assert parcel.is_blocked is False
    assert len(parcel.status_history) == 4

    parcel = await parcel_lifecycle.update_delivery_status(db_session, picked_up.id, ParcelStatus.IN_TRANSIT, rider)
    assert parcel.current_status == ParcelStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_blocked_pending_parcel_cannot_be_cancelled_or_assigned(db_session, people, booking):
    admin = as_actor(people["admin"])
    parcel = await parcel_lifecycle.create_parcel(db_session, people["sender"].id, booking)
    await parcel_lifecycle.block_parcel(db_session, parcel.id, admin)

    with pytest.raises(ParcelBlockedError):
        await parcel_lifecycle.cancel_parcel(db_session, parcel.id, as_actor(people["sender"]))
    with pytest.raises(ParcelBlockedError):
        await parcel_lifecycle.assign_delivery_man(db_session, parcel.id, people["rider"].id, admin)


@pytest.mark.asyncio
async def test_unblock_requires_a_block(db_session, people, picked_up):
    with pytest.raises(ValidationError):
        await parcel_lifecycle.unblock_parcel(db_session, picked_up.id, as_actor(people["admin"]))


@pytest.mark.asyncio
async def test_terminal_parcel_cannot_be_blocked(db_session, people, picked_up):
    admin = as_actor(people["admin"])
    await parcel_lifecycle.confirm_delivery(db_session, picked_up.id, admin)
    with pytest.raises(IllegalTransitionError):
        await parcel_lifecycle.block_parcel(db_session, picked_up.id, admin)


@pytest.mark.asyncio
async def test_unknown_parcel_is_not_found(db_session, people):
    with pytest.raises(ResourceNotFoundError):
        await parcel_lifecycle.cancel_parcel(db_session, 12345, as_actor(people["admin"]))


@pytest.mark.asyncio
async def test_stale_update_is_rejected(session_factory, people, picked_up):
    """Two requests read the same parcel; the second writer must lose."""
    rider = as_actor(people["rider"])

    async with session_factory() as first, session_factory() as second:
        # Both requests hold the parcel as PICKED_UP before either writes
        current = await parcel_lifecycle.load_parcel(first, picked_up.id)
        stale = await parcel_lifecycle.load_parcel(second, picked_up.id)
        assert current.version == stale.version

        await parcel_lifecycle.update_delivery_status(first, picked_up.id, ParcelStatus.IN_TRANSIT, rider)

        with pytest.raises(ConcurrentModificationError) as exc:
            await parcel_lifecycle.update_delivery_status(second, picked_up.id, ParcelStatus.DELIVERED, rider)
        assert exc.value.status_code == 409

    async with session_factory() as fresh:
        parcel = await parcel_lifecycle.load_parcel(fresh, picked_up.id)
        assert parcel.current_status == ParcelStatus.IN_TRANSIT
        assert [entry.status for entry in parcel.status_history] == [
            ParcelStatus.PENDING, ParcelStatus.PICKED_UP, ParcelStatus.IN_TRANSIT
        ]


@pytest.mark.asyncio
async def test_version_bump_out_of_band_is_detected(db_session, people, picked_up, session_factory):
    parcel = await parcel_lifecycle.load_parcel(db_session, picked_up.id)
    parcel_id = parcel.id

    await db_session.execute(
        update(Parcel)
        .where(Parcel.id == parcel.id)
        .values(version=Parcel.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()

    with pytest.raises(ConcurrentModificationError):
        await parcel_lifecycle.update_delivery_status(
            db_session, parcel.id, ParcelStatus.IN_TRANSIT, as_actor(people["rider"])
        )

    async with session_factory() as fresh:
        reloaded = await parcel_lifecycle.load_parcel(fresh, parcel_id)
        assert reloaded.current_status == ParcelStatus.PICKED_UP
        assert len(reloaded.status_history) == 2


@pytest.mark.asyncio
async def test_tracking_number_taken_between_check_and_insert_is_regenerated(db_session, people, booking, monkeypatch):
    sender_id = people["sender"].id
    existing = await parcel_lifecycle.create_parcel(db_session, sender_id, booking)
    taken_number = existing.tracking_number

    numbers = iter([taken_number, "TRK-20260101-FRESH1"])
    monkeypatch.setattr(parcel_lifecycle, "generate_tracking_number", lambda: next(numbers))

    # The first lookup misses, as if the other booking committed right after it
    real_lookup = parcel_lifecycle._tracking_number_taken
    lookups = []

    async def racing_lookup(db, tracking_number):
        lookups.append(tracking_number)
        if len(lookups) == 1:
            return False
        return await real_lookup(db, tracking_number)

    monkeypatch.setattr(parcel_lifecycle, "_tracking_number_taken", racing_lookup)

    parcel = await parcel_lifecycle.create_parcel(db_session, sender_id, booking)

    assert parcel.tracking_number == "TRK-20260101-FRESH1"
    assert parcel.current_status == ParcelStatus.PENDING
    assert len(parcel.status_history) == 1
    assert lookups == [taken_number, taken_number, "TRK-20260101-FRESH1"]
