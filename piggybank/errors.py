from typing import Any, Optional


class PiggyBankError(Exception):
    code = "PIGGYBANK_ERROR"
    retryable = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class ValidationError(PiggyBankError):
    code = "VALIDATION_ERROR"

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__(", ".join(self.violations))

    def to_dict(self) -> dict:
        return {**super().to_dict(), "details": self.violations}


class PendingRequestExists(ValidationError):
    code = "PENDING_REQUEST_EXISTS"


class InvalidAmount(PiggyBankError, ValueError):
    code = "INVALID_AMOUNT"


class NotAuthorized(PiggyBankError):
    code = "NOT_AUTHORIZED"


class WithdrawalNotApproved(PiggyBankError):
    code = "WITHDRAWAL_NOT_APPROVED"


class CorruptLedgerEntry(PiggyBankError):
    code = "CORRUPT_LEDGER_ENTRY"

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(f"{message} at {path}" if path else message)


class ObjectNotFound(PiggyBankError):
    code = "OBJECT_NOT_FOUND"

    def __init__(self, object_id: str):
        self.object_id = object_id
        super().__init__(f"Ledger object {object_id} not found")


class GlobalLedgerNotFound(ObjectNotFound):
    code = "GLOBAL_LEDGER_NOT_FOUND"


class NoEffectDetected(PiggyBankError):
    code = "NO_EFFECT_DETECTED"


class CompositionError(PiggyBankError):
    code = "COMPOSITION_ERROR"


class LedgerRejected(PiggyBankError):
    code = "LEDGER_REJECTED"

    def __init__(
        self,
        message: str,
        step_index: Optional[int] = None,
        function: Optional[str] = None,
        abort_code: Optional[int] = None,
        contended: bool = False,
    ):
        self.step_index = step_index
        self.function = function
        self.abort_code = abort_code
        self.contended = contended
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.contended

    def to_dict(self) -> dict:
        details: dict[str, Any] = {
            "step_index": self.step_index,
            "function": self.function,
            "abort_code": self.abort_code,
        }
        return {**super().to_dict(), "details": details}


class TransientUnavailable(PiggyBankError):
    code = "TRANSIENT_UNAVAILABLE"
    retryable = True
