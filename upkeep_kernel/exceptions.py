"""
Typed Exception Hierarchy for the upkeep packages.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Keepers and relays decide whether to retry by the KIND of failure, never by
parsing messages.  Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, stable across releases)
  3. Carries structured DATA (job id, caller, amounts) as attributes

Example:
    try:
        worker.run_batch(caller, snapshot)
    except UpkeepNotNeededError as e:
        log.info("skip", extra={"job_id": e.job_id, "reason": e.reason})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    UpkeepKernelError (base)
    |
    +-- AccessError
    |   +-- UnauthorizedCallerError
    |
    +-- PreconditionError
    |   +-- UpkeepNotNeededError
    |
    +-- DomainValidationError
    |   +-- InvalidBatchSizeError
    |   +-- InvalidPerformDataError
    |   +-- IndexOutOfRangeError
    |   +-- EntityNotFoundError
    |   +-- InvalidFundingConfigError
    |   +-- InvalidAmountError
    |
    +-- FundingError
    |   +-- InsufficientFundsError
    |
    +-- JobRegistryError
    |   +-- JobNotFoundError
    |   +-- JobNotActiveError
    |   +-- JobNotWithdrawableError
    |
    +-- ConfigurationError
        +-- ManagerNotFoundError
        +-- WatchdogNotFoundError
        +-- DuplicateComponentError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Access          | UNAUTHORIZED_CALLER         | Caller lacks owner/relay/forwarder role
----------------|-----------------------------|-----------------------------------------
Precondition    | UPKEEP_NOT_NEEDED           | Perform called while guard is false
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_BATCH_SIZE          | Batch size 0 or above job capacity
                | INVALID_PERFORM_DATA        | Malformed perform payload
                | INDEX_OUT_OF_RANGE          | Read past the end of a list
                | ENTITY_NOT_FOUND            | Slot holds a placeholder
                | INVALID_FUNDING_CONFIG      | Watchdog percentages/limits invalid
                | INVALID_AMOUNT              | Negative or zero amount
----------------|-----------------------------|-----------------------------------------
Funding         | INSUFFICIENT_FUNDS          | Holder balance below required amount
----------------|-----------------------------|-----------------------------------------
Registry        | JOB_NOT_FOUND               | Registry has no such job id
                | JOB_NOT_ACTIVE              | Cancel/fund on a cancelled job
                | JOB_NOT_WITHDRAWABLE        | Finality delay not elapsed
----------------|-----------------------------|-----------------------------------------
Configuration   | MANAGER_NOT_FOUND           | Unknown manager name
                | WATCHDOG_NOT_FOUND          | Unknown watchdog name
                | DUPLICATE_COMPONENT         | Name already bootstrapped

===============================================================================
FATAL VS. PER-ENTITY
===============================================================================

Access, precondition and registry errors are fatal: the public entry point
that raised them rolls back every state change it made.  Per-entity
validation (ineligible or duplicate entities) and per-entity action
failures are NOT raised; they are reported in result objects and events.
"""

from decimal import Decimal


class UpkeepKernelError(Exception):
    """
    Base exception for all upkeep errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "UPKEEP_KERNEL_ERROR"


# Access control


class AccessError(UpkeepKernelError):
    """Base exception for authorization failures."""

    code: str = "ACCESS_ERROR"


class UnauthorizedCallerError(AccessError):
    """Caller does not hold the role required by the entry point."""

    code: str = "UNAUTHORIZED_CALLER"

    def __init__(self, caller: str, required_role: str, scope: str):
        self.caller = caller
        self.required_role = required_role
        self.scope = scope
        super().__init__(
            f"Caller {caller} is not {required_role} of {scope}"
        )


# Preconditions


class PreconditionError(UpkeepKernelError):
    """Base exception for guard conditions that no longer hold."""

    code: str = "PRECONDITION_ERROR"


class UpkeepNotNeededError(PreconditionError):
    """Perform was invoked while the matching check would report false."""

    code: str = "UPKEEP_NOT_NEEDED"

    def __init__(self, job_id: int | None, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Upkeep not needed for job {job_id}: {reason}")


# Domain validation


class DomainValidationError(UpkeepKernelError):
    """Base exception for invalid arguments and reads."""

    code: str = "DOMAIN_VALIDATION_ERROR"


class InvalidBatchSizeError(DomainValidationError):
    """Batch size is zero or exceeds the per-job capacity."""

    code: str = "INVALID_BATCH_SIZE"

    def __init__(self, batch_size: int, maximum: int):
        self.batch_size = batch_size
        self.maximum = maximum
        super().__init__(
            f"Invalid batch size {batch_size}: must be between 1 and {maximum}"
        )


class InvalidPerformDataError(DomainValidationError):
    """Perform payload cannot be decoded or is internally inconsistent."""

    code: str = "INVALID_PERFORM_DATA"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid perform data: {reason}")


class IndexOutOfRangeError(DomainValidationError):
    """Positional read past the end of a list."""

    code: str = "INDEX_OUT_OF_RANGE"

    def __init__(self, index: int, length: int):
        self.index = index
        self.length = length
        super().__init__(f"Index {index} out of range for length {length}")


class EntityNotFoundError(DomainValidationError):
    """Slot at the requested index holds a placeholder."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No entity at index {index}")


class InvalidFundingConfigError(DomainValidationError):
    """Watchdog configuration violates its percentage or limit rules."""

    code: str = "INVALID_FUNDING_CONFIG"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid funding config: {reason}")


class InvalidAmountError(DomainValidationError):
    """Amount is not strictly positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal):
        self.amount = amount
        super().__init__(f"Amount must be positive, got {amount}")


# Funding


class FundingError(UpkeepKernelError):
    """Base exception for funding-token movements."""

    code: str = "FUNDING_ERROR"


class InsufficientFundsError(FundingError):
    """Holder cannot cover a transfer."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, holder: str, required: Decimal, available: Decimal):
        self.holder = holder
        self.required = required
        self.available = available
        super().__init__(
            f"{holder} has {available}, needs {required}"
        )


# Job registry


class JobRegistryError(UpkeepKernelError):
    """Base exception for job registry collaborator failures."""

    code: str = "JOB_REGISTRY_ERROR"


class JobNotFoundError(JobRegistryError):
    """Registry has no job with the given identifier."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobNotActiveError(JobRegistryError):
    """Operation requires an active job."""

    code: str = "JOB_NOT_ACTIVE"

    def __init__(self, job_id: int, state: str):
        self.job_id = job_id
        self.state = state
        super().__init__(f"Job {job_id} is {state}, expected active")


class JobNotWithdrawableError(JobRegistryError):
    """Cancelled job has not passed its finality delay (or is not cancelled)."""

    code: str = "JOB_NOT_WITHDRAWABLE"

    def __init__(self, job_id: int, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} cannot be withdrawn: {reason}")


# Configuration


class ConfigurationError(UpkeepKernelError):
    """Base exception for wiring and configuration problems."""

    code: str = "CONFIGURATION_ERROR"


class ManagerNotFoundError(ConfigurationError):
    """No upkeep manager with the given name."""

    code: str = "MANAGER_NOT_FOUND"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Upkeep manager not found: {name}")


class WatchdogNotFoundError(ConfigurationError):
    """No funding watchdog with the given name."""

    code: str = "WATCHDOG_NOT_FOUND"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Funding watchdog not found: {name}")


class DuplicateComponentError(ConfigurationError):
    """A manager or watchdog with this name already exists."""

    code: str = "DUPLICATE_COMPONENT"

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} already exists: {name}")
