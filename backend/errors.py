"""Domain errors raised by the stores and the order lifecycle."""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Malformed input: bad id, missing field, unknown enum value."""
    status_code = 400


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    """Caller lacks the role, ownership or order state the operation needs."""
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    """Target is not in the state the transition requires."""
    status_code = 409
