"""Error taxonomy for the allocation engine.

Capacity infeasibility is never raised: it is reported as unassigned events.
"""


class AllocationError(ValueError):
    """Base class for allocation engine failures."""


class InvalidPeriod(AllocationError):
    """Raised when start_date is not strictly before end_date."""


class InvalidVolume(AllocationError):
    """Raised when the annual event total is negative."""


class InvalidConfiguration(AllocationError):
    """Raised when stored configuration cannot be used (bad percentages, carrier/product mismatch)."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class PlanNotFound(AllocationError):
    """Raised when a plan id does not exist for the account."""


class InvalidPlanTransition(AllocationError):
    """Raised on any transition or edit of a plan that is no longer a draft."""


class EmptyPlanImport(AllocationError):
    """Raised when no imported row survives validation."""


class MergeConflict(AllocationError):
    """Raised when another merge holds the (account, carrier, product) lock."""


class MergeAtomicityFailure(AllocationError):
    """Raised when the merge transaction failed and was rolled back. The plan stays draft."""
