"""Reconcile input parsing and validation.

Input arrives either as a JSON array on stdin or as a CSV file. Both paths end
in validate_inputs(), which returns frozen ReconcileRequestItem records or
raises a single InputValidationError listing every problem found.
"""

import json
import re
from collections import Counter
from decimal import Decimal
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from core.errors import InputTooLargeError, InputValidationError, PathSafetyError, UsageError
from core.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ITEMS = 1000
READ_CHUNK_SIZE = 64 * 1024

UUID_SHAPE = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)
ACCOUNT_CODE_SHAPE = re.compile(r"^[A-Za-z0-9]{1,10}$")


def canonical_id(value: str) -> str:
    """Normalize a UUID to the lowercase hyphenated form Xero returns."""
    digits = value.replace("-", "").lower()
    return f"{digits[:8]}-{digits[8:12]}-{digits[12:16]}-{digits[16:20]}-{digits[20:]}"


# =============================================================================
# Input Record
# =============================================================================

class ReconcileRequestItem(BaseModel):
    """One requested reconciliation: a bank transaction and what to apply."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    bank_transaction_id: str = Field(..., alias="BankTransactionID")
    account_code: Optional[str] = Field(None, alias="AccountCode")
    invoice_id: Optional[str] = Field(None, alias="InvoiceID")
    amount: Optional[Decimal] = Field(None, alias="Amount", gt=0)
    currency_code: Optional[str] = Field(None, alias="CurrencyCode", min_length=1)

    @field_validator("bank_transaction_id")
    @classmethod
    def _check_bank_transaction_id(cls, value: str) -> str:
        if not UUID_SHAPE.match(value):
            raise ValueError("Invalid BankTransactionID")
        return canonical_id(value)

    @field_validator("invoice_id")
    @classmethod
    def _check_invoice_id(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not UUID_SHAPE.match(value):
            raise ValueError("Invalid InvoiceID")
        return canonical_id(value) if value is not None else None

    @field_validator("account_code")
    @classmethod
    def _check_account_code(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not ACCOUNT_CODE_SHAPE.match(value):
            raise ValueError("Invalid AccountCode")
        return value

    @model_validator(mode="after")
    def _check_target(self) -> "ReconcileRequestItem":
        if self.account_code and self.invoice_id:
            raise ValueError("AccountCode and InvoiceID are mutually exclusive")
        if not self.account_code and not self.invoice_id:
            raise ValueError("Either AccountCode or InvoiceID is required")
        return self

    @property
    def detail(self) -> str:
        """Short human label for what is being applied."""
        if self.account_code:
            return f"AccountCode {self.account_code}"
        return f"Invoice {self.invoice_id}"


# =============================================================================
# Validation
# =============================================================================

def _format_error(index: int, error: Dict[str, Any]) -> str:
    msg = error["msg"]
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    loc = ".".join(str(part) for part in error.get("loc", ()))
    if loc:
        return f"[{index}] {loc}: {msg}"
    return f"[{index}] {msg}"


def validate_inputs(raw_items: Any) -> List[ReconcileRequestItem]:
    """Validate raw input records.

    Args:
        raw_items: Decoded JSON (or CSV-derived) list of dicts

    Returns:
        Validated items, in input order

    Raises:
        InputValidationError: On any schema violation or duplicate id
    """
    if not isinstance(raw_items, list):
        raise InputValidationError("Input must be a JSON array")
    if not raw_items:
        raise InputValidationError("Input must contain at least 1 item")
    if len(raw_items) > MAX_ITEMS:
        raise InputValidationError(f"Input must contain at most {MAX_ITEMS} items")

    items: List[ReconcileRequestItem] = []
    problems: List[str] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            problems.append(f"[{index}] Item must be an object")
            continue
        try:
            items.append(ReconcileRequestItem.model_validate(raw))
        except ValidationError as e:
            problems.extend(_format_error(index, err) for err in e.errors())

    if problems:
        raise InputValidationError(
            "Invalid reconcile input:\n" + "\n".join(problems),
            context={"errors": problems},
        )

    counts = Counter(item.bank_transaction_id for item in items)
    duplicates = [txn_id for txn_id, count in counts.items() if count > 1]
    if duplicates:
        raise InputValidationError(f"Duplicate BankTransactionID(s): {', '.join(duplicates)}")

    logger.debug(f"Validated {len(items)} reconcile item(s)")
    return items


def read_stdin_with_limit(stream: BinaryIO, max_bytes: int) -> str:
    """Read a binary stream fully, refusing input larger than max_bytes."""
    chunks: List[bytes] = []
    total = 0
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise InputTooLargeError(f"Input exceeds {max_bytes} bytes")
        chunks.append(chunk)
    try:
        return b"".join(chunks).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InputValidationError("Input is not valid UTF-8") from e


def parse_json_input(raw: str) -> List[ReconcileRequestItem]:
    """Parse and validate a JSON array of reconcile items."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InputValidationError(f"Invalid JSON input: {e.msg}") from e
    return validate_inputs(data)


# =============================================================================
# CSV
# =============================================================================

def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line (RFC 4180 quoting; unquoted fields are trimmed)."""
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0

    while i < len(line):
        ch = line[i]
        if in_quotes:
            if ch == '"':
                if i + 1 < len(line) and line[i + 1] == '"':
                    current.append('"')
                    i += 2
                    continue
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"':
            in_quotes = True
        elif ch == ",":
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1

    fields.append("".join(current).strip())
    return fields


def validate_csv_path(path: str, base_dir: Optional[Path] = None) -> Path:
    """Resolve a CSV path and check it stays inside base_dir.

    Returns:
        The resolved path

    Raises:
        PathSafetyError: If the path escapes base_dir or is not a .csv file
    """
    allowed = Path(base_dir).resolve() if base_dir is not None else Path.cwd().resolve()
    resolved = (Path.cwd() / path).resolve()

    if resolved != allowed and allowed not in resolved.parents:
        raise PathSafetyError(f"CSV path must be within {allowed} -- got {resolved}")
    if resolved.suffix.lower() != ".csv":
        raise PathSafetyError("CSV path must have a .csv extension")
    return resolved


def load_csv(path: str, base_dir: Optional[Path] = None) -> List[ReconcileRequestItem]:
    """Load reconcile items from a CSV file with a header row.

    Recognized columns: BankTransactionID (required), AccountCode (falls back
    to SuggestedAccountCode), InvoiceID, Amount, CurrencyCode.
    """
    resolved = validate_csv_path(path, base_dir)
    if not resolved.is_file():
        raise UsageError(f"CSV file not found: {path}")

    try:
        text = resolved.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputValidationError("CSV is not valid UTF-8") from e
    except OSError as e:
        raise UsageError(f"Could not read CSV: {path}") from e
    lines = [line for line in re.split(r"\r?\n", text) if line.strip()]
    if not lines:
        raise UsageError("CSV is empty")

    header = parse_csv_line(lines[0])
    if "BankTransactionID" not in header:
        raise UsageError("CSV missing required column: BankTransactionID")

    raw_items: List[Dict[str, Any]] = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        record = {key: (values[idx] if idx < len(values) else "") for idx, key in enumerate(header)}
        if not record.get("BankTransactionID"):
            continue
        item = {
            "BankTransactionID": record["BankTransactionID"],
            "AccountCode": record.get("AccountCode") or record.get("SuggestedAccountCode") or None,
            "InvoiceID": record.get("InvoiceID") or None,
            "Amount": record.get("Amount") or None,
            "CurrencyCode": record.get("CurrencyCode") or None,
        }
        raw_items.append({k: v for k, v in item.items() if v is not None})

    return validate_inputs(raw_items)
