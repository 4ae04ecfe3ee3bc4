"""
Typed Exception Hierarchy for the Tip Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (command handlers, the reactdrop sweeper, operator
tooling) must react differently to each failure class. A validation failure
goes back to the user, a lost settlement race is dropped silently, a failed
DM is only logged, and a persistence failure aborts the operation. Parsing
messages to tell these apart is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable)
  3. Exceptions carry structured DATA (account ids, amounts, statuses)

    try:
        engine.execute_transfer(intent)
    except InsufficientFundsError as e:
        reply(f"You only have {e.available} available")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TipKernelError (base)
    |
    +-- ValidationError                reported to the caller, nothing mutated
    |   +-- InsufficientFundsError
    |   +-- InvalidSplitError
    |   +-- BelowMinimumError
    |   +-- InvalidTriggerTokenError
    |   +-- InvalidReactdropDurationError
    |   +-- AccountBlacklistedError
    |
    +-- ConcurrencyError               losing side aborts silently
    |   +-- AlreadySettledError
    |
    +-- DeliveryError                  logged, never propagated as a transfer failure
    |   +-- DeliveryFailureError
    |
    +-- PersistenceError               fatal to the operation, callers re-query
    |   +-- PersistenceFailureError
    |
    +-- ReactdropError
    |   +-- ReactdropNotFoundError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | When Raised
----------------|------------------------------|----------------------------------------
Validation      | INSUFFICIENT_FUNDS           | Available balance < requested total
                | INVALID_SPLIT                | Empty/duplicate recipients, self-tip
                | BELOW_MINIMUM                | Amount below configured minimum tip
                | INVALID_TRIGGER_TOKEN        | Reaction token rejected by platform
                | INVALID_REACTDROP_DURATION   | Duration < 1 or above the maximum
                | ACCOUNT_BLACKLISTED          | Initiator is blacklisted
----------------|------------------------------|----------------------------------------
Concurrency     | ALREADY_SETTLED              | Reactdrop no longer pending at claim
----------------|------------------------------|----------------------------------------
Delivery        | DELIVERY_FAILURE             | Public/direct message send failed
----------------|------------------------------|----------------------------------------
Persistence     | PERSISTENCE_FAILURE          | Database unreachable / statement failed
----------------|------------------------------|----------------------------------------
Reactdrop       | REACTDROP_NOT_FOUND          | Unknown reactdrop id
----------------|------------------------------|----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | UPDATE/DELETE of a ledger entry
"""


class TipKernelError(Exception):
    """
    Base exception for all tip kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TIP_KERNEL_ERROR"


# Validation errors


class ValidationError(TipKernelError):
    """Base exception for rejected requests. No state was mutated."""

    code: str = "VALIDATION_ERROR"


class InsufficientFundsError(ValidationError):
    """Source account cannot cover the requested total."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, requested: int, available: int):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds in account {account_id}: "
            f"requested {requested}, available {available}"
        )


class InvalidSplitError(ValidationError):
    """Destination set cannot receive a split."""

    code: str = "INVALID_SPLIT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid split: {reason}")


class BelowMinimumError(ValidationError):
    """Requested amount is below the configured minimum tip."""

    code: str = "BELOW_MINIMUM"

    def __init__(self, amount: int, minimum: int):
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Amount {amount} is below the minimum tip of {minimum}"
        )


class InvalidTriggerTokenError(ValidationError):
    """Reaction token is not usable for a reactdrop."""

    code: str = "INVALID_TRIGGER_TOKEN"

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Invalid reactdrop trigger token: {token!r}")


class InvalidReactdropDurationError(ValidationError):
    """Reactdrop duration outside the allowed window."""

    code: str = "INVALID_REACTDROP_DURATION"

    def __init__(self, duration: int, unit: str, reason: str):
        self.duration = duration
        self.unit = unit
        self.reason = reason
        super().__init__(f"Invalid reactdrop duration {duration} {unit}: {reason}")


class AccountBlacklistedError(ValidationError):
    """Account is blacklisted and may not initiate transfers."""

    code: str = "ACCOUNT_BLACKLISTED"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is blacklisted")


# Concurrency errors


class ConcurrencyError(TipKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class AlreadySettledError(ConcurrencyError):
    """A settlement attempt lost the claim on a reactdrop."""

    code: str = "ALREADY_SETTLED"

    def __init__(self, reactdrop_id: str, status: str | None):
        self.reactdrop_id = reactdrop_id
        self.status = status
        super().__init__(
            f"Reactdrop {reactdrop_id} is not pending (status: {status})"
        )


# Delivery errors


class DeliveryError(TipKernelError):
    """Base exception for notification delivery errors."""

    code: str = "DELIVERY_ERROR"


class DeliveryFailureError(DeliveryError):
    """A single message could not be delivered."""

    code: str = "DELIVERY_FAILURE"

    def __init__(self, target: str, channel_kind: str, reason: str):
        self.target = target
        self.channel_kind = channel_kind
        self.reason = reason
        super().__init__(
            f"Failed to deliver {channel_kind} message to {target}: {reason}"
        )


# Persistence errors


class PersistenceError(TipKernelError):
    """Base exception for storage errors."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceFailureError(PersistenceError):
    """
    The store failed while an operation was in progress.

    The operation must not be assumed to have succeeded. Callers re-query
    balances and reactdrop state instead of deriving them.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


# Reactdrop errors


class ReactdropError(TipKernelError):
    """Base exception for reactdrop lifecycle errors."""

    code: str = "REACTDROP_ERROR"


class ReactdropNotFoundError(ReactdropError):
    """Reactdrop with given ID was not found."""

    code: str = "REACTDROP_NOT_FOUND"

    def __init__(self, reactdrop_id: str):
        self.reactdrop_id = reactdrop_id
        super().__init__(f"Reactdrop not found: {reactdrop_id}")


# Immutability errors


class ImmutabilityViolationError(TipKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
