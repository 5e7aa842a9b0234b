"""
Workflow transition planning -- pure validation of a stage move.

Responsibility:
    Decide whether a move from the current stage to a target stage is
    allowed and, if so, exactly what it does to milestones.  The workflow
    service applies the resulting plan atomically.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Rules:
    - The target must be in the obligation kind's catalog.
    - Moving to the current stage is rejected.
    - A terminal obligation only moves via an explicit reopen, and a reopen
      must land on a non-terminal stage.
    - A target with ``requires_previous`` must be reached from that stage.
    - A target with ``requires_confirmation`` yields ConfirmationRequired
      unless the caller confirmed.
    - Backward moves clear every milestone owned by a stage with ordinal in
      ``[target, current]``; the target's own milestone is then re-stamped.
"""

from __future__ import annotations

from dataclasses import dataclass

from filing_kernel.domain.dtos import ConfirmationRequired
from filing_kernel.domain.stages import MilestoneField, Stage, StageCatalog
from filing_kernel.exceptions import InvalidTransitionError, UnmappedStageError


@dataclass(frozen=True)
class TransitionPlan:
    from_stage: Stage
    to_stage: Stage
    is_backward: bool
    is_reopen: bool
    becomes_terminal: bool
    milestones_to_clear: tuple[MilestoneField, ...] = ()
    milestone_to_set: MilestoneField | None = None
    skipped_stages: tuple[Stage, ...] = ()


def confirmation_warning(catalog: StageCatalog, stage: Stage) -> str:
    label = catalog.get(stage).label
    return (
        f"Moving to '{label}' records the return as filed and completes this "
        "workflow. Confirm the filing acknowledgement has been received."
    )


def plan_transition(
    catalog: StageCatalog,
    current_stage: Stage | str,
    target_stage: Stage | str,
    *,
    reopen: bool = False,
    confirmed: bool = False,
) -> TransitionPlan | ConfirmationRequired:
    """Validate a move and describe its effects.

    Raises:
        InvalidTransitionError: The move is not allowed.
    """
    current = catalog.get(current_stage)
    try:
        target = catalog.get(target_stage)
    except UnmappedStageError:
        raise InvalidTransitionError(
            current.stage.value,
            str(getattr(target_stage, "value", target_stage)),
            f"stage is not part of the {catalog.kind.value} workflow",
        ) from None

    if target.stage == current.stage:
        raise InvalidTransitionError(
            current.stage.value, target.stage.value, "obligation is already in this stage"
        )

    if reopen:
        if not current.is_terminal:
            raise InvalidTransitionError(
                current.stage.value, target.stage.value, "only a completed obligation can be reopened"
            )
        if target.is_terminal:
            raise InvalidTransitionError(
                current.stage.value, target.stage.value, "reopen must target a working stage"
            )
    elif current.is_terminal:
        raise InvalidTransitionError(
            current.stage.value, target.stage.value, "obligation is complete; reopen it first"
        )

    if target.requires_previous is not None and current.stage != target.requires_previous:
        required = catalog.get(target.requires_previous).label
        raise InvalidTransitionError(
            current.stage.value,
            target.stage.value,
            f"must be at '{required}' first",
        )

    if target.requires_confirmation and not confirmed:
        return ConfirmationRequired(
            stage=target.stage,
            warning=confirmation_warning(catalog, target.stage),
        )

    is_backward = target.ordinal < current.ordinal
    cleared: tuple[MilestoneField, ...] = ()
    skipped: tuple[Stage, ...] = ()
    if is_backward:
        cleared = catalog.milestones_in_range(target.ordinal, current.ordinal)
    elif not target.is_terminal:
        skipped = catalog.stages_between(current.ordinal, target.ordinal)

    return TransitionPlan(
        from_stage=current.stage,
        to_stage=target.stage,
        is_backward=is_backward,
        is_reopen=reopen,
        becomes_terminal=target.is_terminal,
        milestones_to_clear=cleared,
        milestone_to_set=target.milestone,
        skipped_stages=skipped,
    )
