"""Domain errors raised by the order ledger services.

Each error carries the HTTP status it maps to; ``app.main`` renders them as
``{"success": false, "error": "<message>"}``.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(LedgerError):
    """Missing field, bad enum, split mismatch, malformed date."""

    status_code = 400


class NotFoundError(LedgerError):
    """Unknown order, item, appended order, withdrawal or branch."""

    status_code = 404

    def __init__(self, entity: str, identifier: Optional[str] = None):
        message = f"{entity} not found" if identifier is None else f"{entity} '{identifier}' not found"
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class ConflictError(LedgerError):
    """Duplicate order id and similar uniqueness violations."""

    status_code = 409


class UnauthorizedError(LedgerError):
    """Privileged operation without a verified elevated-role user."""

    status_code = 403


class SplitPaymentMismatchError(ValidationError):
    """Split cash + gcash does not add up to the amount owed."""

    def __init__(self, cash_amount: float, gcash_amount: float, expected_total: float):
        provided = round(cash_amount + gcash_amount, 2)
        difference = round(expected_total - provided, 2)
        super().__init__(
            f"Split payment amounts (₱{provided:.2f}) must equal the total amount "
            f"(₱{expected_total:.2f}); difference ₱{abs(difference):.2f}"
        )
        self.cash_amount = cash_amount
        self.gcash_amount = gcash_amount
        self.expected_total = expected_total
        self.difference = difference
