from typing import Any


class StockFlowError(Exception):
    """
    Base class for domain errors. Carries a machine-readable code, the HTTP
    status the API layer renders it with, and structured details for the UI.
    """

    code = "stockflow_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class TransferValidationError(StockFlowError):
    code = "invalid_request"
    status_code = 400


class NotFoundError(StockFlowError):
    code = "not_found"
    status_code = 404


class InvalidTransitionError(StockFlowError):
    code = "invalid_status"
    status_code = 400

    def __init__(self, message: str, *, current_status: str | None = None, transition: str | None = None, **kwargs):
        details = kwargs.pop("details", None)
        if details is None and (current_status or transition):
            details = [{"current_status": current_status, "transition": transition}]
        super().__init__(message, details=details, **kwargs)
        self.current_status = current_status
        self.transition = transition


class ForbiddenError(StockFlowError):
    code = "forbidden"
    status_code = 403


class InsufficientStockError(StockFlowError):
    code = "insufficient_stock"
    status_code = 400


class AlreadyProcessedError(StockFlowError):
    code = "already_processed"
    status_code = 409


class LedgerWriteFailure(StockFlowError):
    code = "ledger_write_failure"
    status_code = 500


class LedgerImmutableError(StockFlowError):
    code = "ledger_immutable"
    status_code = 500
