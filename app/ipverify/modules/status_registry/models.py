from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.ipverify.constants import ATTACHMENT_PRIMARY, ATTACHMENT_SUPPORTING, STATUS_APPROVED, STATUS_UNVERIFIED
from app.ipverify.models import Base
from app.ipverify.utils import utcnow


class StatusRecord(Base):
    __tablename__ = "status_records"
    __table_args__ = (
        Index("idx_status_records_status", "status"),
        Index("idx_status_records_last_accessed", "last_accessed"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Normalized IP string; uniqueness is what makes lookup-or-create race-safe.
    identity: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Unverified -> Pending -> Approved/Rejected -> Pending ...
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_UNVERIFIED)

    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_accessed: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    # Contact info (set on submission only)
    device_model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    os_version: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Geo context (best-effort enrichment on first contact)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    region: Mapped[str | None] = mapped_column(String(128), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    isp: Mapped[str | None] = mapped_column(String(255), nullable=True)

    requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    attachments: Mapped[list["StatusAttachment"]] = relationship(
        "StatusAttachment",
        back_populates="record",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StatusAttachment.id",
    )

    @property
    def is_verified(self) -> bool:
        return self.status == STATUS_APPROVED

    @property
    def primary_attachments(self) -> list["StatusAttachment"]:
        return [a for a in self.attachments if a.kind == ATTACHMENT_PRIMARY]

    @property
    def supporting_attachments(self) -> list["StatusAttachment"]:
        return [a for a in self.attachments if a.kind == ATTACHMENT_SUPPORTING]

    def contact_info(self) -> dict[str, str | None]:
        return {
            "device_model": self.device_model,
            "os_version": self.os_version,
            "email": self.email,
            "phone_number": self.phone_number,
        }

    def geo_context(self) -> dict[str, object]:
        return {
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "isp": self.isp,
        }


class StatusAttachment(Base):
    """
    Reference to an evidence image held by the attachment store.
    Insertion order (id) is the order of each sequence.
    """

    __tablename__ = "status_attachments"
    __table_args__ = (
        Index("idx_status_attachments_record", "record_id", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    record_id: Mapped[int] = mapped_column(ForeignKey("status_records.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # primary | supporting

    remote_id: Mapped[str] = mapped_column(String(512), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    record: Mapped[StatusRecord] = relationship(
        "StatusRecord",
        back_populates="attachments",
        lazy="selectin",
    )
