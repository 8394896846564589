"""Credential redaction for anything shown to humans or written to disk.

Error messages from the remote API can echo request details back. Before a
message reaches stderr, a log sink or the audit journal, bearer tokens, OAuth
parameters and tenant ids are replaced with a placeholder.
"""

import re
from typing import List, Tuple

REDACTED = "[REDACTED]"

_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE), f"Bearer {REDACTED}"),
    (re.compile(r"access_token=[^&\s]+", re.IGNORECASE), f"access_token={REDACTED}"),
    (re.compile(r"refresh_token=[^&\s]+", re.IGNORECASE), f"refresh_token={REDACTED}"),
    (re.compile(r"code_verifier=[^&\s]+", re.IGNORECASE), f"code_verifier={REDACTED}"),
    (re.compile(r"\bcode=[^&\s]+", re.IGNORECASE), f"code={REDACTED}"),
    (re.compile(r"client_id=[^&\s]+", re.IGNORECASE), f"client_id={REDACTED}"),
    (re.compile(r"client_secret=[^&\s]+", re.IGNORECASE), f"client_secret={REDACTED}"),
    (re.compile(r"xero-tenant-id[\"']?\s*[:=]\s*[\"']?[^\s,}\"']+", re.IGNORECASE), f"xero-tenant-id: {REDACTED}"),
]


def sanitize_error_message(message: str) -> str:
    """Redact credential-shaped substrings from a message."""
    for pattern, replacement in _PATTERNS:
        message = pattern.sub(replacement, message)
    return message
