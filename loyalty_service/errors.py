from common.error_handling import BusinessLogicError, ErrorCodes


class ValidationFailed(BusinessLogicError):
    code = ErrorCodes.VALIDATION_ERROR


class InvalidOrderNumber(BusinessLogicError):
    code = ErrorCodes.INVALID_ORDER_NUMBER

    def __init__(self, number: str):
        super().__init__("order number fails the Luhn check", field="number", context={"number": number})


class LoginTaken(BusinessLogicError):
    code = ErrorCodes.LOGIN_TAKEN


class OrderConflict(BusinessLogicError):
    code = ErrorCodes.ORDER_CONFLICT


class InsufficientFunds(BusinessLogicError):
    code = ErrorCodes.INSUFFICIENT_FUNDS


# Store-level signals, never shown to clients as such.

class DuplicateOrder(Exception):
    """An order with this number already exists."""


class DuplicateLogin(Exception):
    """A user with this login already exists."""


class LedgerConflict(Exception):
    """Another writer appended to the same chain after we read its head."""
