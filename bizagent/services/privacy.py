"""PII masking for audit detail and admin-facing payloads."""
import re
from typing import Any

SENSITIVE_FIELDS = {
    "phone", "mobile", "email", "address", "password", "account",
    "account_number", "pan", "aadhar", "aadhaar", "upi", "card",
}

# Identifiers we generate (uuid4). Passed through untouched only when the value
# has that shape; references quoted by customers are scrubbed like any text.
ID_FIELDS = {
    "request_id", "approval_id", "record_id", "order_id", "invoice_id",
    "reminder_id", "refund_id", "export_id", "follow_up_id",
}

_GENERATED_ID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

PII_PATTERNS = [
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),  # Email
    re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\s?\d{4}\b"),  # Card
    re.compile(r"\b\d{4}\s?\d{4}\s?\d{4}\b"),  # Aadhaar
    re.compile(r"(?<!\d)\+?\d{10,12}(?!\d)"),  # Phone
    re.compile(r"\b[A-Z]{5}[0-9]{4}[A-Z]\b"),  # PAN
]


def is_generated_id(value: Any) -> bool:
    return isinstance(value, str) and _GENERATED_ID.match(value) is not None


def mask_value(value: Any) -> str:
    """Keep the first and last two characters of long values."""
    text = str(value)
    if len(text) > 4:
        return text[:2] + "***" + text[-2:]
    return "***"


def contains_pii(text: str) -> bool:
    return any(p.search(text or "") for p in PII_PATTERNS)


def scrub_text(text: str) -> str:
    for pattern in PII_PATTERNS:
        text = pattern.sub(lambda m: mask_value(m.group(0)), text)
    return text


def mask_pii(data: Any) -> Any:
    """
    Return a copy of `data` safe for the audit log.

    Values under sensitive keys are masked whole; every other string is
    scrubbed for phone numbers, emails, card, Aadhaar and PAN numbers.
    """
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_FIELDS and value not in (None, ""):
                masked[key] = mask_value(value)
            elif str(key).lower() in ID_FIELDS and is_generated_id(value):
                masked[key] = value
            else:
                masked[key] = mask_pii(value)
        return masked
    if isinstance(data, (list, tuple)):
        return [mask_pii(v) for v in data]
    if isinstance(data, str):
        return scrub_text(data)
    return data
