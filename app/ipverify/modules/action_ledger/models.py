from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.ipverify.models import Base
from app.ipverify.utils import utcnow


class LedgerEntry(Base):
    """
    One cipher-key action. Append-only: rows are inserted and, past retention, deleted; never updated.
    Not linked to status_records; the identity is just the IP the action was reported for.
    """

    __tablename__ = "cipher_key_actions"
    __table_args__ = (
        Index("idx_cipher_key_actions_identity", "identity"),
        Index("idx_cipher_key_actions_recorded_at", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    identity: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)  # encrypt | decrypt
    key_material: Mapped[str] = mapped_column(Text, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
