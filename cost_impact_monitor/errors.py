"""
Error taxonomy for the cost impact monitor.

None of these are fatal to a running monitor; the loops log and carry on.
"""


class CostMonitorError(Exception):
    """Base class for all monitor errors."""


class TransientBackendError(CostMonitorError):
    """Network failure or timeout while talking to a collaborator.

    Retried on the next scheduled tick, never in a tight loop.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class BackendUnavailableError(CostMonitorError):
    """The configuration backend could not be reached at startup."""


class MalformedUnitError(CostMonitorError):
    """A unit manifest could not be parsed for cost hints."""

    def __init__(self, unit_id: str, reason: str):
        super().__init__(f"Unit {unit_id} has an unparseable manifest: {reason}")
        self.unit_id = unit_id
        self.reason = reason


class HookError(CostMonitorError):
    """A pre-apply or post-apply hook failed."""

    def __init__(self, hook: str, unit_id: str, cause: Exception):
        super().__init__(f"Hook {hook} failed for unit {unit_id}: {cause}")
        self.hook = hook
        self.unit_id = unit_id
        self.cause = cause


class SpaceAnalysisError(CostMonitorError):
    """Analysis of a whole space failed (usually its unit listing)."""

    def __init__(self, space_id: str, cause: Exception):
        super().__init__(f"Analysis of space {space_id} failed: {cause}")
        self.space_id = space_id
        self.cause = cause
