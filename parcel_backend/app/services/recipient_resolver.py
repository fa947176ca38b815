"""
Recipient resolution for new parcels.

Turns sender-supplied recipient data into the canonical recipient stored on
the parcel, linking it to a registered user whenever one can be identified.
Cases are evaluated in order:

1. `user_id` given: the user must exist; their profile is copied.
2. name, phone and address given: used as-is; an email, if present, is
   looked up and linked on a match.
3. anything else is rejected.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession

from parcel_backend.app.core.exceptions import ValidationError, ResourceNotFoundError
from parcel_backend.app.schemas.common import MAX_ID
from parcel_backend.app.schemas.parcel import RecipientInput
from parcel_backend.app.services import user_store

logger = logging.getLogger("parcel_backend")

MISSING_FIELD_PLACEHOLDER = "Not provided"


@dataclass(frozen=True)
class ResolvedRecipient:
    name: str
    phone: str
    address: str
    email: Optional[str] = None
    user_id: Optional[int] = None


def parse_user_reference(raw: Union[int, str]) -> int:
    """
    Validate the format of a recipient user reference.

    Accepts positive integers that fit an id column, or their ASCII
    decimal string form.
    """
    if isinstance(raw, bool):
        raise ValidationError("Invalid receiver user ID format.", path="recipient.user_id")
    if isinstance(raw, int):
        value = raw
    else:
        text = str(raw).strip()
        if not (text.isascii() and text.isdecimal()):
            raise ValidationError("Invalid receiver user ID format.", path="recipient.user_id")
        value = int(text)
    if value <= 0 or value > MAX_ID:
        raise ValidationError("Invalid receiver user ID format.", path="recipient.user_id")
    return value


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


async def resolve_recipient(db: AsyncSession, recipient: RecipientInput) -> ResolvedRecipient:
    """
    Produce the canonical recipient for a parcel.

    Raises:
        ValidationError: malformed user reference or insufficient manual details
        ResourceNotFoundError: referenced user does not exist
    """
    if recipient.user_id is not None:
        user_id = parse_user_reference(recipient.user_id)
        user = await user_store.find_by_id(db, user_id)
        if not user:
            raise ResourceNotFoundError("Recipient user", user_id)

        return ResolvedRecipient(
            name=user.name,
            phone=user.phone or MISSING_FIELD_PLACEHOLDER,
            address=user.address or MISSING_FIELD_PLACEHOLDER,
            email=user.email,
            user_id=user.id,
        )

    if _present(recipient.name) and _present(recipient.phone) and _present(recipient.address):
        email = user_store.normalize_email(recipient.email) if recipient.email else None
        linked_user_id = None

        if email:
            match = await user_store.find_by_email(db, email)
            if match:
                linked_user_id = match.id
                logger.info("Linked recipient email to registered user %s", match.id)

        return ResolvedRecipient(
            name=recipient.name.strip(),
            phone=recipient.phone.strip(),
            address=recipient.address.strip(),
            email=email,
            user_id=linked_user_id,
        )

    raise ValidationError(
        "Recipient requires either a registered user_id or name, phone and address",
        path="recipient",
    )
