class AvailabilityError(ValueError):
    """Base class for user-visible availability errors."""


class AvailabilityValidationError(AvailabilityError):
    pass


class DuplicateOverrideError(AvailabilityError):
    def __init__(self, date: str):
        super().__init__(f"Already marked unavailable on {date}")
        self.date = date


class PersistenceError(AvailabilityError):
    """Raised by the persistence layer for any database failure."""


class UniquenessViolation(PersistenceError):
    pass
