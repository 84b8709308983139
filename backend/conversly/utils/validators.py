# backend/conversly/utils/validators.py
"""
Input validation for user-submitted text (feedback form).

Provides:
- Email validation
- Plain-text sanitization (all HTML stripped with bleach)
- Detection of script-like content
"""

import re
from typing import Iterable, Optional, Tuple

import bleach


# ==================== Email Validation ====================

# RFC 5322 compliant email regex (simplified)
EMAIL_REGEX = re.compile(
    r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
)


def validate_email(email: str) -> Tuple[bool, Optional[str]]:
    """
    Validate an email address.

    Args:
        email: The email address to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not email:
        return False, "Email is required"

    email = email.strip().lower()

    if len(email) > 254:
        return False, "Email address is too long"

    if not EMAIL_REGEX.match(email):
        return False, "Invalid email format"

    if '..' in email:
        return False, "Invalid email format"

    return True, None


def is_valid_email(email: str) -> bool:
    is_valid, _ = validate_email(email)
    return is_valid


# ==================== Sanitization ====================

SUSPICIOUS_PATTERNS = [
    re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
    re.compile(r'javascript:', re.IGNORECASE),
    re.compile(r'on\w+\s*=', re.IGNORECASE),
    re.compile(r'data:text/html', re.IGNORECASE),
    re.compile(r'vbscript:', re.IGNORECASE),
]


def strip_html_tags(text: str) -> str:
    """Remove all HTML tags and return plain text."""
    if not text:
        return ""
    return bleach.clean(text, tags=[], strip=True)


def contains_suspicious_content(values: Iterable[Optional[str]]) -> bool:
    """True if any value looks like an attempt to smuggle script. Checked on raw input."""
    joined = " ".join(v for v in values if v)
    return any(p.search(joined) for p in SUSPICIOUS_PATTERNS)
