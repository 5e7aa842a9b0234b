"""
ObligationModel -- one filing cycle for one client, with its milestones.

Invariants enforced:
    - (client_id, kind, period_end) is UNIQUE: rollover can never create the
      same period twice.
    - At most one non-terminal obligation per client+kind, enforced by a
      partial unique index (``WHERE NOT is_terminal``) on both SQLite and
      PostgreSQL.
    - ``version`` is the optimistic-lock counter (``version_id_col``): an
      UPDATE issued against a stale version raises StaleDataError, which
      services translate to ConcurrentModificationError.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filing_kernel.db.base import ACTOR_ID_LENGTH, Base, TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from filing_kernel.domain.dtos import Milestone
    from filing_kernel.models.due_date import DueDateStateModel


class ObligationModel(TrackedBase):
    __tablename__ = "obligations"

    __table_args__ = (
        UniqueConstraint(
            "client_id", "kind", "period_end", name="uq_obligation_client_kind_period"
        ),
        Index(
            "uq_obligation_one_open_per_client",
            "client_id",
            "kind",
            unique=True,
            sqlite_where=text("is_terminal = 0"),
            postgresql_where=text("NOT is_terminal"),
        ),
        Index("ix_obligation_kind_stage", "kind", "current_stage"),
        Index("ix_obligation_client", "client_id"),
    )

    client_id: Mapped[str] = mapped_column(String(100), nullable=False)
    client_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    cadence_group: Mapped[str] = mapped_column(String(32), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    statutory_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    current_stage: Mapped[str] = mapped_column(String(64), nullable=False)
    is_terminal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_reviewer_id: Mapped[str | None] = mapped_column(
        String(ACTOR_ID_LENGTH), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    confirmation_statement_due: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    milestones: Mapped[list["ObligationMilestoneModel"]] = relationship(
        "ObligationMilestoneModel",
        back_populates="obligation",
        cascade="all, delete-orphan",
        order_by="ObligationMilestoneModel.stamped_at",
    )

    due_date_state: Mapped["DueDateStateModel | None"] = relationship(
        "DueDateStateModel",
        back_populates="obligation",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Obligation {self.client_id} {self.kind} "
            f"{self.period_end} {self.current_stage}>"
        )

    def milestone_row(self, field: str) -> ObligationMilestoneModel | None:
        for row in self.milestones:
            if row.field == field:
                return row
        return None


class ObligationMilestoneModel(Base):
    """Timestamp + actor recorded when an obligation reached a stage."""

    __tablename__ = "obligation_milestones"

    __table_args__ = (
        UniqueConstraint("obligation_id", "field", name="uq_milestone_obligation_field"),
    )

    obligation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("obligations.id", ondelete="CASCADE"),
        nullable=False,
    )
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    stamped_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(ACTOR_ID_LENGTH), nullable=False)
    actor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    obligation: Mapped[ObligationModel] = relationship(
        ObligationModel, back_populates="milestones",
    )

    def to_dto(self) -> Milestone:
        from filing_kernel.domain.dtos import Milestone
        from filing_kernel.domain.stages import MilestoneField

        return Milestone(
            field=MilestoneField(self.field),
            stamped_at=self.stamped_at,
            actor_id=self.actor_id,
            actor_name=self.actor_name,
        )
