class LinkError(Exception):
    """Base for failures while resolving or registering a device link."""
    pass


class LookupFailure(LinkError):
    """Link store unreachable or returned a malformed select response."""
    pass


class TelemetryFailure(LinkError):
    """Local device info could not be collected."""
    pass


class RegistrationFailure(LinkError):
    """Link store rejected or never answered a device insertion."""
    pass
