from __future__ import annotations

import re
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from dateutil.relativedelta import relativedelta

_REFERRAL_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_PERIOD_RE = re.compile(r"^\d{4}-\d{2}$")


def now_ts() -> float:
    return float(time.time())


def generate_referral_code(prefix: str = "WG", length: int = 6) -> str:
    """Generate a referral code such as ``WG7K2QXA``."""
    return prefix + "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(length))


def parse_period(period: Any) -> Optional[Tuple[datetime, datetime]]:
    """Return the UTC [start, end) bounds of a ``YYYY-MM`` period, or None if malformed."""
    text = str(period or "").strip()
    if not _PERIOD_RE.match(text):
        return None
    year, month = (int(p) for p in text.split("-"))
    if not 1 <= month <= 12:
        return None
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    return start, start + relativedelta(months=1)
