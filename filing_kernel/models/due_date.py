"""DueDateStateModel -- AUTO/MANUAL corporation-tax due date for an annual obligation."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filing_kernel.db.base import ACTOR_ID_LENGTH, TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from filing_kernel.domain.due_dates import DueDateState
    from filing_kernel.models.obligation import ObligationModel


class DueDateStateModel(TrackedBase):
    __tablename__ = "due_date_states"

    obligation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("obligations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    value: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_updated_by: Mapped[str | None] = mapped_column(String(ACTOR_ID_LENGTH), nullable=True)
    last_updated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    filed_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    obligation: Mapped["ObligationModel"] = relationship(
        "ObligationModel", back_populates="due_date_state",
    )

    def to_dto(self) -> DueDateState:
        from filing_kernel.domain.due_dates import DueDateSource, DueDateState

        return DueDateState(
            source=DueDateSource(self.source),
            value=self.value,
            last_updated_by=self.last_updated_by,
            last_updated_at=self.last_updated_at,
            filed_on=self.filed_on,
            next_due_date=self.next_due_date,
        )

    def apply(self, state: DueDateState, actor_id: str) -> None:
        """Copy a computed state onto the row."""
        self.source = state.source.value
        self.value = state.value
        self.last_updated_by = state.last_updated_by
        self.last_updated_at = state.last_updated_at
        self.filed_on = state.filed_on
        self.next_due_date = state.next_due_date
        self.updated_by_id = actor_id
