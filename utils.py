import re
import uuid
from datetime import datetime, timezone
from typing import Optional


def validate_email(email):
    return re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', email or "")


def validate_phone(phone):
    return re.match(r'^\+?\d{9,15}$', clean_phone(phone))


def clean_phone(phone):
    """Drop the spaces, dashes and dots people type into phone numbers"""
    return re.sub(r'[\s\-\.()]', '', phone or "")


def new_id(prefix):
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def utc_now_iso(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """Parse ISO timestamps as written by browsers (trailing Z) or by Python."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_referral_link(base_url, username):
    base = (base_url or "").split("?")[0]
    return f"{base}?ref={username}"
