"""
Parcel and parcel status log database models.

A parcel embeds its recipient as `recipient_*` columns and owns an
append-only status history. `version` is the optimistic concurrency
token: every UPDATE is issued as `... WHERE id = :id AND version = :seen`.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from parcel_backend.app.db.session import Base
from parcel_backend.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel booking created by a sender.

    `current_status` always equals the status of the last history entry.
    """
    __tablename__ = "parcels"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tracking_number = Column(String(32), unique=True, nullable=False, index=True)

    # Parties
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    delivery_man_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Embedded recipient
    recipient_name = Column(String(100), nullable=False)
    recipient_phone = Column(String(20), nullable=False)
    recipient_address = Column(String(500), nullable=False)
    recipient_email = Column(String(255), nullable=True, index=True)
    recipient_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Shipment details
    weight = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=True)
    pickup_address = Column(String(500), nullable=True)
    notes = Column(String(1000), nullable=True)

    # Lifecycle
    current_status = Column(Enum(ParcelStatus), default=ParcelStatus.PENDING, nullable=False, index=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, nullable=False)

    status_history = relationship(
        "ParcelStatusLog",
        back_populates="parcel",
        order_by="ParcelStatusLog.sequence",
        lazy="selectin",
        cascade="save-update, merge",
    )

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Parcel(id={self.id}, tracking='{self.tracking_number}', status='{self.current_status.value}')>"


class ParcelStatusLog(Base):
    """
    One entry of a parcel's status history.

    `updated_by` is a plain user id; names and emails are joined at read time.
    """
    __tablename__ = "parcel_status_logs"
    __table_args__ = (
        UniqueConstraint("parcel_id", "sequence", name="uq_parcel_status_log_sequence"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    parcel_id = Column(Integer, ForeignKey("parcels.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(Enum(ParcelStatus), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    note = Column(String(500), nullable=True)

    parcel = relationship("Parcel", back_populates="status_history")

    def __repr__(self):
        return f"<ParcelStatusLog(parcel_id={self.parcel_id}, seq={self.sequence}, status='{self.status.value}')>"
