"""
Parcel Pydantic schemas.

Defines request and response models for parcel booking and tracking.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List, Union
from parcel_backend.app.models.parcel_enums import ParcelStatus
from parcel_backend.app.schemas.common import MAX_ID


class RecipientInput(BaseModel):
    """
    Recipient as supplied by the sender.

    Either `user_id` of a registered user, or manual `name`, `phone` and
    `address` (with optional `email`). Which combination is sufficient is
    decided by the recipient resolver, not here.
    """
    user_id: Optional[Union[int, str]] = Field(None, description="ID of a registered recipient")
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, min_length=1, max_length=20)
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    email: Optional[EmailStr] = None


class ParcelCreate(BaseModel):
    """Schema for creating a new parcel."""
    recipient: RecipientInput
    weight: float = Field(..., gt=0, description="Weight in kilograms")
    delivery_fee: Optional[float] = Field(None, ge=0)
    pickup_address: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class AssignDeliveryMan(BaseModel):
    """Schema for PATCH /parcels/{id}/assign."""
    delivery_man_id: int = Field(..., gt=0, le=MAX_ID)


class UpdateDeliveryStatus(BaseModel):
    """Schema for PATCH /parcels/{id}/update-delivery-status."""
    status: ParcelStatus
    note: Optional[str] = Field(None, max_length=500)


class AdminParcelAction(BaseModel):
    """Optional note for confirm/block/unblock."""
    note: Optional[str] = Field(None, max_length=500)


class RecipientResponse(BaseModel):
    name: str
    phone: str
    address: str
    email: Optional[str] = None
    user_id: Optional[int] = None


class StatusLogResponse(BaseModel):
    """History entry; `updated_by_*` fields are joined at read time."""
    status: ParcelStatus
    timestamp: datetime
    updated_by: Optional[int] = None
    updated_by_name: Optional[str] = None
    updated_by_email: Optional[str] = None
    note: Optional[str] = None


class ParcelResponse(BaseModel):
    """Schema for parcel response."""
    id: int
    tracking_number: str
    sender_id: int
    recipient: RecipientResponse
    delivery_man_id: Optional[int] = None
    delivery_fee: Optional[float] = None
    pickup_address: Optional[str] = None
    weight: float
    current_status: ParcelStatus
    is_blocked: bool
    status_history: List[StatusLogResponse]
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
