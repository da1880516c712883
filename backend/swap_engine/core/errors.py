"""
Engine error taxonomy.

Every error carries a stable machine-readable code plus the details of the
violated rule, so callers can present actionable guidance. The HTTP status
is attached here and rendered by the exception handler in main.py.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional


class SwapError(Exception):
    code = "SWAP_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class NotFoundError(SwapError):
    code = "NOT_FOUND"
    status_code = 404


class NotOwnerError(SwapError):
    code = "NOT_OWNER"
    status_code = 403


class InvalidListingError(SwapError):
    code = "INVALID_LISTING"
    status_code = 422


# Structural validation errors: recoverable by choosing another target, never retried.

class TargetingValidationError(SwapError):
    status_code = 409


class ListingUnavailableError(TargetingValidationError):
    code = "LISTING_UNAVAILABLE"


class SelfTargetingError(TargetingValidationError):
    code = "SELF_TARGETING"
    status_code = 422


class OwnListingError(TargetingValidationError):
    code = "OWN_LISTING"
    status_code = 422


class AlreadyTargetingError(TargetingValidationError):
    code = "ALREADY_TARGETING"


class AuctionClosedError(TargetingValidationError):
    code = "AUCTION_CLOSED"


class CircularTargetingError(TargetingValidationError):
    code = "CIRCULAR_TARGETING"

    def __init__(self, cycle: list[int], message: Optional[str] = None):
        chain = " -> ".join(str(listing_id) for listing_id in [*cycle, cycle[0]])
        super().__init__(message or f"Targeting would close the cycle {chain}", cycle=cycle)
        self.cycle = cycle


# Lifecycle errors

class InvalidTransitionError(SwapError):
    code = "INVALID_TRANSITION"
    status_code = 409


class AlreadyResolvedError(SwapError):
    code = "ALREADY_RESOLVED"
    status_code = 409


class ConcurrencyConflictError(SwapError):
    code = "CONCURRENCY_CONFLICT"
    status_code = 409
    retryable = True


# Collaborator errors

class DependencyUnavailableError(SwapError):
    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503
    retryable = True


class VersionConflict(Exception):
    """Optimistic version check failed inside a unit of work; the transaction is retried."""


@contextmanager
def dependency_call(service: str, **details: Any) -> Iterator[None]:
    """Turn a collaborator's transport or protocol failure into DEPENDENCY_UNAVAILABLE."""
    try:
        yield
    except SwapError:
        raise
    except Exception as e:
        raise DependencyUnavailableError(
            f"The {service} service is unavailable",
            service=service,
            error=f"{type(e).__name__}: {e}",
            **details,
        ) from e
