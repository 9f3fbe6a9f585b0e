# streetlights/errors.py


class EngineError(Exception):
    """Base class for every recoverable, item-level engine error."""


class ValidationError(EngineError):
    """Bad input (missing note, invalid coordinates...). Raised before any store call."""


class IdentityMissingError(EngineError):
    """No usable reporter identity and contact capture was cancelled."""


class CooldownDenied(EngineError):
    def __init__(self, light_id: str):
        super().__init__("already reported this cycle")
        self.light_id = light_id


class StoreError(EngineError):
    pass


class StoreConstraintError(StoreError):
    """The store rejected a value (enum / check constraint)."""


class StoreReadDenied(StoreError):
    """The insert may go through but the inserted row cannot be read back."""


class StoreUnavailableError(StoreError):
    pass


class MissingColumnError(StoreError):
    """The store schema does not have a column we tried to write yet."""

    def __init__(self, column: str, message: str = ""):
        super().__init__(message or f"column {column} does not exist")
        self.column = column
