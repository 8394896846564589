"""Integrity checks on Xero write responses.

A write that returns 200 is not necessarily a write that did what was asked.
These checks compare the echoed record with the request; any mismatch raises
IntegrityError and the item is reported failed.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import ValidationError

from connectors.xero.xero_models import BankTransactionsResponse, Payment, PaymentsResponse
from core.errors import IntegrityError

TOTAL_TOLERANCE = Decimal("0.01")


def _has_errors(record: Any) -> bool:
    return bool(
        record.has_errors
        or record.has_validation_errors
        or record.status_attribute_string == "ERROR"
    )


def assert_valid_bank_transaction_response(
    payload: Dict[str, Any],
    bank_transaction_id: str,
    expected_total: Optional[Decimal],
) -> None:
    """Check an update response echoes the requested transaction intact.

    Args:
        payload: Raw response body
        bank_transaction_id: Id that was updated
        expected_total: Total before the update (None skips the comparison)

    Raises:
        IntegrityError: If the response does not confirm the update
    """
    try:
        response = BankTransactionsResponse.model_validate(payload)
    except ValidationError as e:
        raise IntegrityError("Invalid BankTransaction response payload") from e

    if not response.bank_transactions:
        raise IntegrityError("Missing BankTransaction in response")
    record = response.bank_transactions[0]

    if not record.bank_transaction_id:
        raise IntegrityError("Missing BankTransactionID in response")
    if record.bank_transaction_id.lower() != bank_transaction_id.lower():
        raise IntegrityError(
            "BankTransactionID mismatch in response",
            context={"expected": bank_transaction_id, "actual": record.bank_transaction_id},
        )
    if _has_errors(record):
        raise IntegrityError("BankTransaction response has validation errors")

    if expected_total is not None and record.total is not None:
        if abs(record.total - expected_total) > TOTAL_TOLERANCE:
            raise IntegrityError(
                "BankTransaction total mismatch",
                context={"expected": str(expected_total), "actual": str(record.total)},
            )


def assert_valid_payment(payment: Payment) -> None:
    if not payment.payment_id:
        raise IntegrityError("Missing PaymentID in response")
    if _has_errors(payment):
        raise IntegrityError("Payment response has validation errors")
    if payment.amount is None:
        raise IntegrityError("Missing Amount in payment response")


def assert_valid_payment_response(response: PaymentsResponse) -> Payment:
    """Check every returned payment and return the first.

    Raises:
        IntegrityError: If no payment was returned or any is invalid
    """
    if not response.payments:
        raise IntegrityError("Missing Payment in response")
    for payment in response.payments:
        assert_valid_payment(payment)
    return response.payments[0]
