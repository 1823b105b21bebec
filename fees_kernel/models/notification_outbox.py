"""
Module: fees_kernel.models.notification_outbox
Responsibility: Notifications decided inside a financial transaction and
    delivered after it commits.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are written in the same transaction as the financial mutation
      they describe, so a rolled-back allocation never notifies anyone.
    - Delivery status changes never touch financial rows.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import Base, UUIDString


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    __table_args__ = (Index("idx_outbox_status_created", "status", "created_at"),)

    student_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    audience: Mapped[str] = mapped_column(String(20), nullable=False)

    kind: Mapped[str] = mapped_column(String(40), nullable=False)

    recipient: Mapped[str | None] = mapped_column(String(64), nullable=True)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    new_balance: Mapped[Decimal | None] = mapped_column(nullable=True)

    transaction_ref: Mapped[str] = mapped_column(String(64), nullable=False)

    message: Mapped[str] = mapped_column(String(2000), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OutboxStatus.PENDING.value,
    )

    attempts: Mapped[int] = mapped_column(nullable=False, default=0)

    last_error: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
