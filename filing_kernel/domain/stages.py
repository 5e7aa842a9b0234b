"""
Stage catalog -- ordered work stages per obligation kind.

Responsibility:
    Declares, for every obligation kind, the total order of workflow stages,
    which stage stamps which milestone, which stage is the non-working
    "awaiting period end" start, and which stages are terminal.

Architecture position:
    Kernel > Domain -- static data plus pure lookups, zero I/O.

Invariants enforced:
    - Ordinals in a catalog are unique and contiguous from 0.
    - Exactly one awaiting stage, at ordinal 0.
    - At least one terminal stage.
    - Every milestone is owned by exactly one stage in a catalog.
    - Every ``Stage`` member appears in at least one catalog.

    All of these are checked when the module is imported, so a stage
    without a catalog entry fails at startup rather than mid-transition.

Catalogs are append-only: removing a stage that live obligations
reference is a data migration, not something this module supports.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from filing_kernel.exceptions import CatalogDefinitionError, UnmappedStageError


class ObligationKind(str, Enum):
    """Kinds of recurring obligation with their own workflow."""

    VAT_RETURN = "vat_return"
    ANNUAL_ACCOUNTS = "annual_accounts"
    NON_LTD_ACCOUNTS = "non_ltd_accounts"

    @property
    def has_due_date_override(self) -> bool:
        return self is ObligationKind.ANNUAL_ACCOUNTS

    @property
    def uses_registry(self) -> bool:
        return self is ObligationKind.ANNUAL_ACCOUNTS

    @property
    def fixed_cadence(self) -> str | None:
        """Cadence code every instance of this kind must use, if pinned."""
        if self is ObligationKind.NON_LTD_ACCOUNTS:
            return "annual:04-05"
        return None


class Stage(str, Enum):
    """Every stage identifier across all catalogs."""

    WAITING_FOR_QUARTER_END = "WAITING_FOR_QUARTER_END"
    WAITING_FOR_YEAR_END = "WAITING_FOR_YEAR_END"
    PAPERWORK_PENDING_CHASE = "PAPERWORK_PENDING_CHASE"
    PAPERWORK_CHASED = "PAPERWORK_CHASED"
    PAPERWORK_RECEIVED = "PAPERWORK_RECEIVED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    QUERIES_PENDING = "QUERIES_PENDING"
    REVIEW_PENDING_MANAGER = "REVIEW_PENDING_MANAGER"
    REVIEWED_BY_MANAGER = "REVIEWED_BY_MANAGER"
    REVIEW_PENDING_PARTNER = "REVIEW_PENDING_PARTNER"
    REVIEWED_BY_PARTNER = "REVIEWED_BY_PARTNER"
    EMAILED_TO_PARTNER = "EMAILED_TO_PARTNER"
    EMAILED_TO_CLIENT = "EMAILED_TO_CLIENT"
    CLIENT_APPROVED = "CLIENT_APPROVED"
    DISCUSS_WITH_MANAGER = "DISCUSS_WITH_MANAGER"
    REVIEW_BY_PARTNER = "REVIEW_BY_PARTNER"
    REVIEW_DONE_HELLO_SIGN = "REVIEW_DONE_HELLO_SIGN"
    SENT_TO_CLIENT_HELLO_SIGN = "SENT_TO_CLIENT_HELLO_SIGN"
    APPROVED_BY_CLIENT = "APPROVED_BY_CLIENT"
    SUBMISSION_APPROVED_PARTNER = "SUBMISSION_APPROVED_PARTNER"
    FILED_TO_COMPANIES_HOUSE = "FILED_TO_COMPANIES_HOUSE"
    FILED_TO_HMRC = "FILED_TO_HMRC"
    CLIENT_SELF_FILING = "CLIENT_SELF_FILING"


class MilestoneField(str, Enum):
    """Timestamp + actor slots stamped when a stage is reached."""

    CHASE_STARTED = "chase_started"
    PAPERWORK_RECEIVED = "paperwork_received"
    WORK_STARTED = "work_started"
    WORK_FINISHED = "work_finished"
    MANAGER_DISCUSSION = "manager_discussion"
    PARTNER_REVIEW = "partner_review"
    REVIEW_COMPLETED = "review_completed"
    SENT_TO_CLIENT = "sent_to_client"
    CLIENT_APPROVED = "client_approved"
    PARTNER_APPROVED = "partner_approved"
    FILED_TO_COMPANIES_HOUSE = "filed_to_companies_house"
    FILED_TO_HMRC = "filed_to_hmrc"
    CLIENT_SELF_FILING = "client_self_filing"


@dataclass(frozen=True)
class StageDefinition:
    stage: Stage
    ordinal: int
    label: str
    milestone: MilestoneField | None = None
    is_terminal: bool = False
    is_awaiting: bool = False
    requires_confirmation: bool = False
    requires_previous: Stage | None = None


class StageCatalog:
    """Ordered, validated stage list for one obligation kind."""

    def __init__(self, kind: ObligationKind, definitions: tuple[StageDefinition, ...]):
        self.kind = kind
        self._definitions = tuple(sorted(definitions, key=lambda d: d.ordinal))
        self._by_stage = {d.stage: d for d in self._definitions}
        self._validate()

    def _validate(self) -> None:
        name = self.kind.value
        if len(self._by_stage) != len(self._definitions):
            raise CatalogDefinitionError(name, "duplicate stage")

        ordinals = [d.ordinal for d in self._definitions]
        if ordinals != list(range(len(ordinals))):
            raise CatalogDefinitionError(name, f"ordinals not contiguous: {ordinals}")

        awaiting = [d for d in self._definitions if d.is_awaiting]
        if len(awaiting) != 1 or awaiting[0].ordinal != 0:
            raise CatalogDefinitionError(name, "exactly one awaiting stage at ordinal 0")

        if not any(d.is_terminal for d in self._definitions):
            raise CatalogDefinitionError(name, "no terminal stage")

        owners: dict[MilestoneField, Stage] = {}
        for d in self._definitions:
            if d.requires_previous is not None and d.requires_previous not in self._by_stage:
                raise CatalogDefinitionError(
                    name, f"{d.stage.value} requires unknown stage {d.requires_previous.value}"
                )
            if d.milestone is None:
                continue
            if d.milestone in owners:
                raise CatalogDefinitionError(
                    name,
                    f"milestone {d.milestone.value} owned by both "
                    f"{owners[d.milestone].value} and {d.stage.value}",
                )
            owners[d.milestone] = d.stage
        self._milestone_owner = owners

    # -- lookups -------------------------------------------------------------

    def __contains__(self, stage: object) -> bool:
        try:
            return Stage(stage) in self._by_stage
        except ValueError:
            return False

    def __iter__(self):
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    @property
    def stages(self) -> tuple[StageDefinition, ...]:
        return self._definitions

    def get(self, stage: Stage | str) -> StageDefinition:
        try:
            return self._by_stage[Stage(stage)]
        except (KeyError, ValueError):
            raise UnmappedStageError(str(stage), self.kind.value) from None

    def ordinal(self, stage: Stage | str) -> int:
        return self.get(stage).ordinal

    @property
    def awaiting_stage(self) -> StageDefinition:
        return self._definitions[0]

    @property
    def first_working_stage(self) -> StageDefinition:
        return self._definitions[1]

    @property
    def terminal_stages(self) -> tuple[StageDefinition, ...]:
        return tuple(d for d in self._definitions if d.is_terminal)

    def milestone_owner(self, milestone: MilestoneField) -> StageDefinition:
        try:
            return self._by_stage[self._milestone_owner[milestone]]
        except KeyError:
            raise UnmappedStageError(milestone.value, self.kind.value) from None

    def milestones_in_range(self, low: int, high: int) -> tuple[MilestoneField, ...]:
        """Milestones owned by stages with ordinal in ``[low, high]``."""
        return tuple(
            d.milestone
            for d in self._definitions
            if d.milestone is not None and low <= d.ordinal <= high
        )

    def stages_between(self, low: int, high: int) -> tuple[Stage, ...]:
        """Stages strictly between two ordinals."""
        return tuple(d.stage for d in self._definitions if low < d.ordinal < high)


# =============================================================================
# Catalog definitions
# =============================================================================

VAT_CATALOG = StageCatalog(
    ObligationKind.VAT_RETURN,
    (
        StageDefinition(Stage.WAITING_FOR_QUARTER_END, 0, "Waiting for quarter end", is_awaiting=True),
        StageDefinition(Stage.PAPERWORK_PENDING_CHASE, 1, "Paperwork pending chase"),
        StageDefinition(Stage.PAPERWORK_CHASED, 2, "Paperwork chased", MilestoneField.CHASE_STARTED),
        StageDefinition(Stage.PAPERWORK_RECEIVED, 3, "Paperwork received", MilestoneField.PAPERWORK_RECEIVED),
        StageDefinition(Stage.WORK_IN_PROGRESS, 4, "Work in progress", MilestoneField.WORK_STARTED),
        StageDefinition(Stage.QUERIES_PENDING, 5, "Queries pending"),
        StageDefinition(Stage.REVIEW_PENDING_MANAGER, 6, "Review pending (manager)", MilestoneField.WORK_FINISHED),
        StageDefinition(Stage.REVIEWED_BY_MANAGER, 7, "Reviewed by manager"),
        StageDefinition(Stage.REVIEW_PENDING_PARTNER, 8, "Review pending (partner)"),
        StageDefinition(Stage.REVIEWED_BY_PARTNER, 9, "Reviewed by partner", MilestoneField.PARTNER_REVIEW),
        StageDefinition(Stage.EMAILED_TO_PARTNER, 10, "Emailed to partner"),
        StageDefinition(Stage.EMAILED_TO_CLIENT, 11, "Emailed to client", MilestoneField.SENT_TO_CLIENT),
        StageDefinition(Stage.CLIENT_APPROVED, 12, "Client approved", MilestoneField.CLIENT_APPROVED),
        StageDefinition(
            Stage.FILED_TO_HMRC, 13, "Filed to HMRC", MilestoneField.FILED_TO_HMRC,
            is_terminal=True, requires_confirmation=True,
        ),
        StageDefinition(
            Stage.CLIENT_SELF_FILING, 14, "Client self filing", MilestoneField.CLIENT_SELF_FILING,
            is_terminal=True, requires_confirmation=True,
        ),
    ),
)

ANNUAL_ACCOUNTS_CATALOG = StageCatalog(
    ObligationKind.ANNUAL_ACCOUNTS,
    (
        StageDefinition(Stage.WAITING_FOR_YEAR_END, 0, "Waiting for year end", is_awaiting=True),
        StageDefinition(Stage.PAPERWORK_PENDING_CHASE, 1, "Paperwork pending chase"),
        StageDefinition(Stage.PAPERWORK_CHASED, 2, "Paperwork chased", MilestoneField.CHASE_STARTED),
        StageDefinition(Stage.PAPERWORK_RECEIVED, 3, "Paperwork received", MilestoneField.PAPERWORK_RECEIVED),
        StageDefinition(Stage.WORK_IN_PROGRESS, 4, "Work in progress", MilestoneField.WORK_STARTED),
        StageDefinition(Stage.DISCUSS_WITH_MANAGER, 5, "Discuss with manager", MilestoneField.MANAGER_DISCUSSION),
        StageDefinition(Stage.REVIEWED_BY_MANAGER, 6, "Reviewed by manager"),
        StageDefinition(Stage.REVIEW_BY_PARTNER, 7, "Review by partner", MilestoneField.PARTNER_REVIEW),
        StageDefinition(Stage.REVIEWED_BY_PARTNER, 8, "Reviewed by partner"),
        StageDefinition(
            Stage.REVIEW_DONE_HELLO_SIGN, 9, "Review done - sent for e-signature",
            MilestoneField.REVIEW_COMPLETED,
        ),
        StageDefinition(
            Stage.SENT_TO_CLIENT_HELLO_SIGN, 10, "Sent to client for e-signature",
            MilestoneField.SENT_TO_CLIENT,
        ),
        StageDefinition(Stage.APPROVED_BY_CLIENT, 11, "Approved by client", MilestoneField.CLIENT_APPROVED),
        StageDefinition(
            Stage.SUBMISSION_APPROVED_PARTNER, 12, "Submission approved by partner",
            MilestoneField.PARTNER_APPROVED,
        ),
        StageDefinition(
            Stage.FILED_TO_COMPANIES_HOUSE, 13, "Filed to Companies House",
            MilestoneField.FILED_TO_COMPANIES_HOUSE,
        ),
        StageDefinition(
            Stage.FILED_TO_HMRC, 14, "Filed to HMRC", MilestoneField.FILED_TO_HMRC,
            is_terminal=True, requires_confirmation=True,
            requires_previous=Stage.FILED_TO_COMPANIES_HOUSE,
        ),
        StageDefinition(
            Stage.CLIENT_SELF_FILING, 15, "Client self filing", MilestoneField.CLIENT_SELF_FILING,
            is_terminal=True, requires_confirmation=True,
        ),
    ),
)

# Sole traders and partnerships: tax-year accounts, filed with HMRC only.
NON_LTD_ACCOUNTS_CATALOG = StageCatalog(
    ObligationKind.NON_LTD_ACCOUNTS,
    (
        StageDefinition(Stage.WAITING_FOR_YEAR_END, 0, "Waiting for year end", is_awaiting=True),
        StageDefinition(Stage.PAPERWORK_PENDING_CHASE, 1, "Paperwork pending chase"),
        StageDefinition(Stage.PAPERWORK_CHASED, 2, "Paperwork chased", MilestoneField.CHASE_STARTED),
        StageDefinition(Stage.PAPERWORK_RECEIVED, 3, "Paperwork received", MilestoneField.PAPERWORK_RECEIVED),
        StageDefinition(Stage.WORK_IN_PROGRESS, 4, "Work in progress", MilestoneField.WORK_STARTED),
        StageDefinition(Stage.DISCUSS_WITH_MANAGER, 5, "Discuss with manager", MilestoneField.MANAGER_DISCUSSION),
        StageDefinition(Stage.REVIEWED_BY_MANAGER, 6, "Reviewed by manager"),
        StageDefinition(Stage.REVIEW_BY_PARTNER, 7, "Review by partner", MilestoneField.PARTNER_REVIEW),
        StageDefinition(Stage.REVIEWED_BY_PARTNER, 8, "Reviewed by partner"),
        StageDefinition(
            Stage.REVIEW_DONE_HELLO_SIGN, 9, "Review done - sent for e-signature",
            MilestoneField.REVIEW_COMPLETED,
        ),
        StageDefinition(
            Stage.SENT_TO_CLIENT_HELLO_SIGN, 10, "Sent to client for e-signature",
            MilestoneField.SENT_TO_CLIENT,
        ),
        StageDefinition(Stage.APPROVED_BY_CLIENT, 11, "Approved by client", MilestoneField.CLIENT_APPROVED),
        StageDefinition(
            Stage.SUBMISSION_APPROVED_PARTNER, 12, "Submission approved by partner",
            MilestoneField.PARTNER_APPROVED,
        ),
        StageDefinition(
            Stage.FILED_TO_HMRC, 13, "Filed to HMRC", MilestoneField.FILED_TO_HMRC,
            is_terminal=True, requires_confirmation=True,
        ),
        StageDefinition(
            Stage.CLIENT_SELF_FILING, 14, "Client self filing", MilestoneField.CLIENT_SELF_FILING,
            is_terminal=True, requires_confirmation=True,
        ),
    ),
)

CATALOGS: dict[ObligationKind, StageCatalog] = {
    ObligationKind.VAT_RETURN: VAT_CATALOG,
    ObligationKind.ANNUAL_ACCOUNTS: ANNUAL_ACCOUNTS_CATALOG,
    ObligationKind.NON_LTD_ACCOUNTS: NON_LTD_ACCOUNTS_CATALOG,
}


def catalog_for(kind: ObligationKind | str) -> StageCatalog:
    return CATALOGS[ObligationKind(kind)]


def validate_stage_coverage(catalogs: dict[ObligationKind, StageCatalog] = CATALOGS) -> None:
    """Raise UnmappedStageError for any Stage member no catalog defines."""
    if set(catalogs) != set(ObligationKind):
        missing = sorted(k.value for k in set(ObligationKind) - set(catalogs))
        raise CatalogDefinitionError("all", f"no catalog for kinds {missing}")
    covered = {d.stage for catalog in catalogs.values() for d in catalog}
    for stage in Stage:
        if stage not in covered:
            raise UnmappedStageError(stage.value)


validate_stage_coverage()
