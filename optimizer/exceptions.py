"""
Optimizer error taxonomy.

Only SiteNotFound (or any other failure before the module loop) ends a run in
`error`. ModuleError and its subclasses are caught by the orchestrator and folded
into that module's result. PolicyViolation is a normal "stay in the queue" outcome.
"""


class OptimizerError(Exception):
    """Base class for optimizer errors."""


class SiteNotFound(OptimizerError):
    def __init__(self, site_id, run_id=None):
        self.site_id = site_id
        self.run_id = run_id
        super().__init__(f"Site not found: {site_id}")


class ModuleError(OptimizerError):
    """A pipeline module failed; the run carries on."""


class CompletionValidationError(ModuleError):
    """The completion service returned JSON that does not match the expected shape."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__(f"Completion response failed validation: {errors}")


class PolicyViolation(OptimizerError):
    """An apply gate refused the change; the item stays where it is."""

    def __init__(self, reason, message=None):
        self.reason = reason
        super().__init__(message or reason)


class DailyCapReached(PolicyViolation):
    def __init__(self, site_id, cap):
        self.site_id = site_id
        self.cap = cap
        super().__init__('daily_cap_reached', f"Daily change cap of {cap} reached for site {site_id}")


class InvalidTransition(OptimizerError):
    def __init__(self, item_id, action, status):
        self.item_id = item_id
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} queue item {item_id} from status '{status}'")


class RunInProgress(OptimizerError):
    def __init__(self, run_id):
        self.run_id = run_id
        super().__init__(f"Optimization run {run_id} is already in progress")
