"""
Typed Exception Hierarchy for the back-office services.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the sweep loop, the HTTP layer, operators reading logs) must be
able to tell a malformed recurrence rule from a lost race from a failed
invoice write without parsing message strings.  Therefore:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BackofficeError (base)
    |
    +-- RuleError
    |   +-- InvalidRecurrenceRuleError
    |   +-- InvalidScheduleError
    |
    +-- ScheduleError
    |   +-- ScheduleNotFoundError
    |   +-- InvalidStatusTransitionError
    |
    +-- ConcurrencyError
    |   +-- StaleStateError
    |   +-- DuplicateOccurrenceError
    |
    +-- ExecutionError
    |   +-- ExecutionFailureError
    |
    +-- CollaboratorError
    |   +-- JobCreationError
    |   +-- InvoiceCreationError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------------
Rule          | INVALID_RECURRENCE_RULE     | Frequency/interval/day fields inconsistent
              | INVALID_SCHEDULE            | Template or bounds unusable at creation
--------------|-----------------------------|-------------------------------------------
Schedule      | SCHEDULE_NOT_FOUND          | Schedule ID doesn't exist
              | INVALID_STATUS_TRANSITION   | e.g. resume a cancelled schedule
--------------|-----------------------------|-------------------------------------------
Concurrency   | STALE_STATE                 | Guarded update matched no row (lost race)
              | DUPLICATE_OCCURRENCE        | History row already exists (idempotency)
--------------|-----------------------------|-------------------------------------------
Execution     | EXECUTION_FAILED            | Job/Invoice write failed, rolled back
--------------|-----------------------------|-------------------------------------------
Collaborators | JOB_CREATION_FAILED         | Job domain rejected the job
              | INVOICE_CREATION_FAILED     | Invoice domain rejected the invoice
--------------|-----------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of an append-only row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RuleError is raised at schedule creation and surfaced to the caller
   immediately; the execution path never sees a malformed rule.

2. DuplicateOccurrenceError is SUCCESS for idempotency purposes:

    try:
        repository.insert_history(row)
    except DuplicateOccurrenceError:
        # Another worker already executed this occurrence
        return existing_result()

3. StaleStateError means another writer moved the schedule first.
   The sweep treats it as "nothing to do"; request handlers map it to 409.

4. ExecutionFailureError is logged and retried by the next sweep tick,
   but raised to the user for a manual "run now".
"""


class BackofficeError(Exception):
    """
    Base exception for all back-office errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BACKOFFICE_ERROR"


# Rule-related exceptions


class RuleError(BackofficeError):
    """Base exception for recurrence rule and schedule definition errors."""

    code: str = "RULE_ERROR"


class InvalidRecurrenceRuleError(RuleError):
    """Recurrence rule is malformed (e.g. weekly without day_of_week)."""

    code: str = "INVALID_RECURRENCE_RULE"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid recurrence rule: {field}: {reason}")


class InvalidScheduleError(RuleError):
    """Schedule definition is unusable (templates, amounts, bounds)."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid schedule: {field}: {reason}")


# Schedule-related exceptions


class ScheduleError(BackofficeError):
    """Base exception for schedule lookup and lifecycle errors."""

    code: str = "SCHEDULE_ERROR"


class ScheduleNotFoundError(ScheduleError):
    """Schedule with given ID was not found."""

    code: str = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Recurring schedule not found: {schedule_id}")


class InvalidStatusTransitionError(ScheduleError):
    """Requested lifecycle action is not allowed from the current status."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, schedule_id: str | None, current_status: str, action: str):
        self.schedule_id = schedule_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} schedule {schedule_id} in status {current_status}"
        )


# Concurrency-related exceptions


class ConcurrencyError(BackofficeError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StaleStateError(ConcurrencyError):
    """A guarded (compare-and-swap) update matched no row."""

    code: str = "STALE_STATE"

    def __init__(self, entity_type: str, entity_id: str, expected: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(
            f"Stale state on {entity_type} {entity_id}: expected {expected}, "
            "row was modified by another transaction"
        )


class DuplicateOccurrenceError(ConcurrencyError):
    """
    A history row for (schedule_id, scheduled_for) already exists.

    Not a failure: the occurrence was executed by another worker.
    """

    code: str = "DUPLICATE_OCCURRENCE"

    def __init__(self, schedule_id: str, scheduled_for: str):
        self.schedule_id = schedule_id
        self.scheduled_for = scheduled_for
        super().__init__(
            f"Occurrence {scheduled_for} of schedule {schedule_id} already executed"
        )


# Execution-related exceptions


class ExecutionError(BackofficeError):
    """Base exception for occurrence execution errors."""

    code: str = "EXECUTION_ERROR"


class ExecutionFailureError(ExecutionError):
    """
    Executing an occurrence failed and was rolled back.

    The occurrence remains due; the sweep retries it on its next tick.
    """

    code: str = "EXECUTION_FAILED"

    def __init__(
        self,
        schedule_id: str,
        occurrence_date: str,
        cause_code: str | None,
        reason: str,
    ):
        self.schedule_id = schedule_id
        self.occurrence_date = occurrence_date
        self.cause_code = cause_code
        self.reason = reason
        super().__init__(
            f"Execution of schedule {schedule_id} for {occurrence_date} failed: {reason}"
        )


# Collaborator exceptions (Job / Invoice domains)


class CollaboratorError(BackofficeError):
    """Base exception for failures reported by the Job/Invoice domains."""

    code: str = "COLLABORATOR_ERROR"


class JobCreationError(CollaboratorError):
    """The Job domain could not create the job."""

    code: str = "JOB_CREATION_FAILED"

    def __init__(self, reason: str, schedule_id: str | None = None):
        self.reason = reason
        self.schedule_id = schedule_id
        super().__init__(f"Job creation failed: {reason}")


class InvoiceCreationError(CollaboratorError):
    """The Invoice domain could not create the invoice."""

    code: str = "INVOICE_CREATION_FAILED"

    def __init__(self, reason: str, job_id: str | None = None):
        self.reason = reason
        self.job_id = job_id
        super().__init__(f"Invoice creation failed: {reason}")


# Immutability


class ImmutabilityViolationError(BackofficeError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id}: record is append-only"
        )
