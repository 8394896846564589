"""Xero Accounting API data models.

Explicit records for the endpoints the reconciler reads and writes. Field names
are snake_case with the Xero PascalCase names as aliases; unknown fields are
kept (extra="allow") so records can be sent back without losing data.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Xero API Models
# =============================================================================

class XeroBaseModel(BaseModel):
    """Base model for Xero API entities."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_api(self) -> Dict[str, Any]:
        """Serialize back to the Xero wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LineItem(XeroBaseModel):
    """A single line item within a bank transaction."""
    description: Optional[str] = Field(None, alias="Description")
    quantity: Optional[Decimal] = Field(None, alias="Quantity")
    unit_amount: Optional[Decimal] = Field(None, alias="UnitAmount")
    tax_type: Optional[str] = Field(None, alias="TaxType")
    tax_amount: Optional[Decimal] = Field(None, alias="TaxAmount")
    line_amount: Optional[Decimal] = Field(None, alias="LineAmount")
    account_code: Optional[str] = Field(None, alias="AccountCode")


class BankAccountRef(XeroBaseModel):
    """Bank account a transaction belongs to."""
    account_id: Optional[str] = Field(None, alias="AccountID")
    code: Optional[str] = Field(None, alias="Code")
    name: Optional[str] = Field(None, alias="Name")


class ContactRef(XeroBaseModel):
    name: Optional[str] = Field(None, alias="Name")


class BankTransaction(XeroBaseModel):
    """Xero BankTransaction.

    Maps to: /BankTransactions
    """
    bank_transaction_id: Optional[str] = Field(None, alias="BankTransactionID")
    type: Optional[str] = Field(None, alias="Type")  # "SPEND", "RECEIVE", ...
    date: Optional[str] = Field(None, alias="Date")
    date_string: Optional[str] = Field(None, alias="DateString")
    total: Optional[Decimal] = Field(None, alias="Total")
    contact: Optional[ContactRef] = Field(None, alias="Contact")
    reference: Optional[str] = Field(None, alias="Reference")
    currency_code: Optional[str] = Field(None, alias="CurrencyCode")
    is_reconciled: Optional[bool] = Field(None, alias="IsReconciled")
    line_items: List[LineItem] = Field(default_factory=list, alias="LineItems")
    bank_account: Optional[BankAccountRef] = Field(None, alias="BankAccount")
    has_errors: Optional[bool] = Field(None, alias="HasErrors")
    has_validation_errors: Optional[bool] = Field(None, alias="HasValidationErrors")
    status_attribute_string: Optional[str] = Field(None, alias="StatusAttributeString")

    def distinct_account_codes(self) -> List[str]:
        """Account codes referenced by existing line items, in first-seen order."""
        seen: List[str] = []
        for item in self.line_items:
            if item.account_code not in seen:
                seen.append(item.account_code)
        return seen


class Invoice(XeroBaseModel):
    """Xero Invoice.

    Maps to: /Invoices
    """
    invoice_id: str = Field(..., alias="InvoiceID")
    status: Optional[str] = Field(None, alias="Status")  # "DRAFT", "AUTHORISED", "PAID", ...
    amount_due: Optional[Decimal] = Field(None, alias="AmountDue")
    currency_code: Optional[str] = Field(None, alias="CurrencyCode")
    invoice_number: Optional[str] = Field(None, alias="InvoiceNumber")


class Account(XeroBaseModel):
    """Xero chart-of-accounts entry.

    Maps to: /Accounts
    """
    account_id: Optional[str] = Field(None, alias="AccountID")
    code: Optional[str] = Field(None, alias="Code")
    name: Optional[str] = Field(None, alias="Name")
    status: Optional[str] = Field(None, alias="Status")  # "ACTIVE", "ARCHIVED"
    type: Optional[str] = Field(None, alias="Type")


class Payment(XeroBaseModel):
    """Xero Payment as returned by PUT /Payments."""
    payment_id: Optional[str] = Field(None, alias="PaymentID")
    amount: Optional[Decimal] = Field(None, alias="Amount")
    status_attribute_string: Optional[str] = Field(None, alias="StatusAttributeString")
    has_errors: Optional[bool] = Field(None, alias="HasErrors")
    has_validation_errors: Optional[bool] = Field(None, alias="HasValidationErrors")


# =============================================================================
# Response Wrappers
# =============================================================================

class BankTransactionsResponse(XeroBaseModel):
    bank_transactions: List[BankTransaction] = Field(default_factory=list, alias="BankTransactions")


class InvoicesResponse(XeroBaseModel):
    invoices: List[Invoice] = Field(default_factory=list, alias="Invoices")


class AccountsResponse(XeroBaseModel):
    accounts: List[Account] = Field(default_factory=list, alias="Accounts")


class PaymentsResponse(XeroBaseModel):
    payments: List[Payment] = Field(default_factory=list, alias="Payments")
