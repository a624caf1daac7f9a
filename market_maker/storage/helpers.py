from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_for_redis(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, str, Decimal)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def to_redis_mapping(payload: dict[str, Any]) -> dict[str, str]:
    return {str(key): serialize_for_redis(value) for key, value in payload.items()}
