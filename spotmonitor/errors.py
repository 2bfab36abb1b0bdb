# spotmonitor/errors.py


class SpotMonitorError(Exception):
    pass


class ValidationError(SpotMonitorError):
    def __init__(self, message, field=None, value=None):
        super().__init__(message)
        self.field = field
        self.value = value


class NotFoundError(SpotMonitorError):
    def __init__(self, entity, key):
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class OwnershipError(SpotMonitorError, PermissionError):
    """Caller does not own the referenced entity."""

    def __init__(self, entity, key, caller_id):
        SpotMonitorError.__init__(self, f"{entity} {key} is not owned by {caller_id}")
        self.entity = entity
        self.key = key
        self.caller_id = caller_id

    def __str__(self):
        return self.args[0]


class UpstreamError(SpotMonitorError):
    """A provider, store or channel call failed or timed out."""

    def __init__(self, message, operation=None, region=None):
        super().__init__(message)
        self.operation = operation
        self.region = region


class PartialFailure(UpstreamError):
    """
    Some sub-operations of a fan-out failed.

    `outcomes` maps each attempted sub-step to None (succeeded) or the
    exception it raised.
    """

    def __init__(self, message, outcomes, operation=None, region=None):
        super().__init__(message, operation=operation, region=region)
        self.outcomes = outcomes

    @property
    def failed(self):
        return [step for step, err in self.outcomes.items() if err is not None]


class ConflictError(SpotMonitorError):
    """Optimistic version check failed."""
