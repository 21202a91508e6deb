class LedgerError(ValueError):
    code = "LEDGER_ERROR"


class NotFound(LedgerError):
    code = "NOT_FOUND"


class Unauthorized(NotFound):
    """Record exists but belongs to another user; reported exactly like NotFound."""

    code = "NOT_FOUND"


class InvalidRange(LedgerError):
    code = "INVALID_RANGE"


class Conflict(LedgerError):
    code = "CONFLICT"


class TypeMismatch(LedgerError):
    code = "TYPE_MISMATCH"
