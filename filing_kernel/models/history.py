"""
ObligationHistoryModel -- append-only workflow transition ledger.

Each row records one stage change (or creation, with ``from_stage`` NULL).
Rows are never updated or deleted; see db/immutability.py.  ``sequence``
is per-obligation and strictly increasing, so entries sharing a
``changed_at`` still have a total order.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from filing_kernel.db.base import ACTOR_ID_LENGTH, Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from filing_kernel.domain.dtos import HistoryEntryInfo


class ObligationHistoryModel(Base):
    __tablename__ = "obligation_history"

    __table_args__ = (
        UniqueConstraint("obligation_id", "sequence", name="uq_history_obligation_sequence"),
        Index("ix_history_obligation_changed", "obligation_id", "changed_at"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("obligations.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(ACTOR_ID_LENGTH), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> HistoryEntryInfo:
        from filing_kernel.domain.dtos import HistoryEntryInfo
        from filing_kernel.domain.stages import Stage

        return HistoryEntryInfo(
            entry_id=self.id,
            obligation_id=self.obligation_id,
            sequence=self.sequence,
            from_stage=Stage(self.from_stage) if self.from_stage else None,
            to_stage=Stage(self.to_stage),
            changed_at=self.changed_at,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            notes=self.notes,
        )
