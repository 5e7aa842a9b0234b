"""
Typed exception hierarchy for the filing kernel.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
that survive logging and serialization.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FilingKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   +-- ObligationNotFoundError
    |   +-- OpenObligationExistsError
    |
    +-- CatalogError
    |   +-- UnmappedStageError
    |   +-- CatalogDefinitionError
    |
    +-- DueDateError
    |   +-- InvalidDateError
    |   +-- NoPeriodEndError
    |   +-- UnsupportedObligationKindError
    |
    +-- CadenceError
    |   +-- InvalidCadenceGroupError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- CollaboratorError
    |   +-- RegistryUnavailableError
    |   +-- ReviewerPoolUnavailableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- BatchError
        +-- BatchJobNotFoundError
        +-- BatchAlreadyRunningError
        +-- BatchIdempotencyError
        +-- TaskNotRegisteredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|--------------------------------------
Workflow     | INVALID_TRANSITION          | Stage move not allowed
             | OBLIGATION_NOT_FOUND        | Obligation id doesn't exist
             | OPEN_OBLIGATION_EXISTS      | Client+kind already has an open one
-------------|-----------------------------|--------------------------------------
Catalog      | UNMAPPED_STAGE              | Stage belongs to no catalog
             | CATALOG_DEFINITION_INVALID  | Ordinals/milestones malformed
-------------|-----------------------------|--------------------------------------
Due date     | INVALID_DATE                | Manual override predates period end
             | NO_PERIOD_END               | Reset-to-auto without a basis date
             | UNSUPPORTED_OBLIGATION_KIND | Override on a non-annual obligation
-------------|-----------------------------|--------------------------------------
Cadence      | INVALID_CADENCE_GROUP       | Unparseable cadence group code
-------------|-----------------------------|--------------------------------------
Concurrency  | CONCURRENT_MODIFICATION     | Optimistic-lock conflict on commit
-------------|-----------------------------|--------------------------------------
Collaborator | REGISTRY_UNAVAILABLE        | Registry lookup failed (non-fatal)
             | REVIEWER_POOL_UNAVAILABLE   | No reviewers to assign (aborts run)
-------------|-----------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | History row update/delete attempted
-------------|-----------------------------|--------------------------------------
Batch        | BATCH_JOB_NOT_FOUND         | Job id doesn't exist
             | BATCH_ALREADY_RUNNING       | Job not in PENDING state
             | BATCH_IDEMPOTENCY_CONFLICT  | Idempotency key already used
             | TASK_NOT_REGISTERED         | Unknown task_type

``ConfirmationRequired`` is deliberately NOT an exception: it is a soft
result returned by the workflow service (see domain/dtos.py).
"""


class FilingKernelError(Exception):
    """
    Base exception for all filing kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FILING_KERNEL_ERROR"


# Workflow-related exceptions


class WorkflowError(FilingKernelError):
    """Base exception for workflow errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """A stage move is not allowed from the obligation's current position."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, from_stage: str | None, to_stage: str, reason: str):
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_stage} -> {to_stage}: {reason}"
        )


class ObligationNotFoundError(WorkflowError):
    """Obligation with the given id does not exist."""

    code: str = "OBLIGATION_NOT_FOUND"

    def __init__(self, obligation_id: str):
        self.obligation_id = obligation_id
        super().__init__(f"Obligation not found: {obligation_id}")


class OpenObligationExistsError(WorkflowError):
    """A non-terminal obligation already exists for the client and kind."""

    code: str = "OPEN_OBLIGATION_EXISTS"

    def __init__(self, client_id: str, kind: str, existing_id: str | None = None):
        self.client_id = client_id
        self.kind = kind
        self.existing_id = existing_id
        super().__init__(
            f"Client {client_id} already has an open {kind} obligation"
            + (f" ({existing_id})" if existing_id else "")
        )


# Catalog-related exceptions


class CatalogError(FilingKernelError):
    """Base exception for stage catalog errors."""

    code: str = "CATALOG_ERROR"


class UnmappedStageError(CatalogError):
    """A stage is not part of the catalog it was looked up in."""

    code: str = "UNMAPPED_STAGE"

    def __init__(self, stage: str, catalog: str | None = None):
        self.stage = stage
        self.catalog = catalog
        where = f"catalog {catalog}" if catalog else "any catalog"
        super().__init__(f"Stage {stage} is not defined in {where}")


class CatalogDefinitionError(CatalogError):
    """A stage catalog is malformed."""

    code: str = "CATALOG_DEFINITION_INVALID"

    def __init__(self, catalog: str, reason: str):
        self.catalog = catalog
        self.reason = reason
        super().__init__(f"Stage catalog {catalog} is invalid: {reason}")


# Due-date exceptions


class DueDateError(FilingKernelError):
    """Base exception for due-date override errors."""

    code: str = "DUE_DATE_ERROR"


class InvalidDateError(DueDateError):
    """Manual due date precedes the obligation's period end."""

    code: str = "INVALID_DATE"

    def __init__(self, due_date: str, period_end: str):
        self.due_date = due_date
        self.period_end = period_end
        super().__init__(
            f"Due date {due_date} cannot precede period end {period_end}"
        )


class NoPeriodEndError(DueDateError):
    """Reset-to-auto requested without a period end to compute from."""

    code: str = "NO_PERIOD_END"

    def __init__(self, obligation_id: str | None = None):
        self.obligation_id = obligation_id
        super().__init__(
            "Cannot compute automatic due date without a period end"
            + (f" (obligation {obligation_id})" if obligation_id else "")
        )


class UnsupportedObligationKindError(DueDateError):
    code: str = "UNSUPPORTED_OBLIGATION_KIND"

    def __init__(self, obligation_id: str, kind: str):
        self.obligation_id = obligation_id
        self.kind = kind
        super().__init__(
            f"Due-date overrides are not supported for {kind} "
            f"obligation {obligation_id}"
        )


# Cadence exceptions


class CadenceError(FilingKernelError):
    """Base exception for cadence configuration errors."""

    code: str = "CADENCE_ERROR"


class InvalidCadenceGroupError(CadenceError):
    """Cadence group code cannot be parsed."""

    code: str = "INVALID_CADENCE_GROUP"

    def __init__(self, value: str, reason: str = "unrecognised cadence group"):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid cadence group {value!r}: {reason}")


# Concurrency exceptions


class ConcurrencyError(FilingKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """The obligation changed underneath a transition (optimistic lock)."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        obligation_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.obligation_id = obligation_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        detail = ""
        if expected_version is not None:
            detail = f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            f"Obligation {obligation_id} was modified by another transaction"
            f"{detail}"
        )


# Collaborator exceptions


class CollaboratorError(FilingKernelError):
    """Base exception for failures of external collaborators."""

    code: str = "COLLABORATOR_ERROR"


class RegistryUnavailableError(CollaboratorError):
    """
    Registry lookup failed.

    Non-fatal: callers fall back to calendar computation and log a warning.
    """

    code: str = "REGISTRY_UNAVAILABLE"

    def __init__(self, client_ref: str | None, reason: str = "unavailable"):
        self.client_ref = client_ref
        self.reason = reason
        super().__init__(f"Registry lookup for {client_ref} failed: {reason}")


class ReviewerPoolUnavailableError(CollaboratorError):
    """The eligible reviewer pool could not be loaded or is empty."""

    code: str = "REVIEWER_POOL_UNAVAILABLE"

    def __init__(self, role: str, reason: str = "no eligible reviewers"):
        self.role = role
        self.reason = reason
        super().__init__(f"Reviewer pool for role {role} unavailable: {reason}")


# Immutability exceptions


class ImmutabilityError(FilingKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Batch exceptions


class BatchError(FilingKernelError):
    """Base exception for batch processing errors."""

    code: str = "BATCH_ERROR"


class BatchJobNotFoundError(BatchError):
    code: str = "BATCH_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Batch job not found: {job_id}")


class BatchAlreadyRunningError(BatchError):
    """Job is not in a runnable (PENDING) state."""

    code: str = "BATCH_ALREADY_RUNNING"

    def __init__(self, job_name: str, job_id: str, status: str | None = None):
        self.job_name = job_name
        self.job_id = job_id
        self.status = status
        super().__init__(
            f"Batch job {job_name} ({job_id}) cannot run"
            + (f" from status {status}" if status else "")
        )


class BatchIdempotencyError(BatchError):
    code: str = "BATCH_IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_job_id: str):
        self.idempotency_key = idempotency_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Idempotency key {idempotency_key} already used by job "
            f"{existing_job_id}"
        )


class TaskNotRegisteredError(BatchError):
    code: str = "TASK_NOT_REGISTERED"

    def __init__(self, task_type: str, available: tuple[str, ...] = ()):
        self.task_type = task_type
        self.available = available
        super().__init__(
            f"No task registered for type {task_type!r}. "
            f"Available: {list(available)}"
        )
