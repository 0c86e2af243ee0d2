class EarningsError(Exception):
    kind = "earnings_error"


class InvalidInputError(EarningsError):
    kind = "invalid_input"


class NotFoundError(EarningsError):
    kind = "not_found"


class InsufficientBalanceError(EarningsError):
    kind = "insufficient_balance"


class DuplicateStreamError(EarningsError):
    kind = "duplicate_stream"


class ExternalServiceError(EarningsError):
    """The exchange gateway was unreachable or rejected the request.

    Safe for the caller to resubmit: nothing was written locally.
    """

    kind = "external_service_failure"


class ConsistencyFaultError(EarningsError):
    """An exchange order exists that has no matching local ledger record."""

    kind = "consistency_fault"

    def __init__(self, message: str, external_order_id: str):
        super().__init__(message)
        self.external_order_id = external_order_id
