"""
Module: fees_kernel.models.transaction_claim
Responsibility: One row per idempotency key ever processed.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - claim_key is unique (uq_transaction_claim_key).  This constraint is the
      concurrency primitive for at-most-once processing: the second writer
      of a key fails its INSERT atomically instead of reading then writing.
    - Rows are append-only (ORM listener + PostgreSQL trigger).

Audit relevance:
    payload_hash lets a replay with a different body be detected and logged.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fees_kernel.db.base import Base
from fees_kernel.db.types import PayloadHash


class ClaimKind(str, Enum):
    TRANSACTION = "TRANSACTION"
    RECEIPT = "RECEIPT"


class TransactionClaim(Base):
    """Ownership of one idempotency key by one notification."""

    __tablename__ = "transaction_claims"

    __table_args__ = (UniqueConstraint("claim_key", name="uq_transaction_claim_key"),)

    claim_key: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # The notification's own transaction id (equals claim_key for TRANSACTION)
    external_transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)

    payload_hash: Mapped[PayloadHash] = mapped_column(nullable=False)

    claimed_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<TransactionClaim {self.kind} {self.claim_key}>"
