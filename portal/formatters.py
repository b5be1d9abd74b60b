"""
Row formatting helpers shared by the session service and the API handlers.
"""

import json
from typing import Optional


def parse_tags(raw_value) -> list[str]:
    """Parse a stored tag list (JSON array, or legacy comma-separated text)."""
    if not raw_value:
        return []
    try:
        parsed = json.loads(raw_value)
    except (TypeError, ValueError):
        return [tag.strip() for tag in str(raw_value).split(",") if tag.strip()]
    return parsed if isinstance(parsed, list) else []


def serialize_tags(tags) -> str:
    """Serialize tags given as a list or comma-separated string into a JSON array."""
    if isinstance(tags, (list, tuple)):
        return json.dumps(list(tags), ensure_ascii=False)
    if isinstance(tags, str):
        cleaned = [tag.strip() for tag in tags.split(",") if tag.strip()]
        return json.dumps(cleaned, ensure_ascii=False)
    return "[]"


def format_user_row(row: Optional[dict]) -> Optional[dict]:
    """Convert a users row into the public API shape. The password never leaves."""
    if row is None:
        return None
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "department": row.get("department") or "",
        "is_admin": bool(row.get("is_admin")),
        "jobTitle": row.get("job_title") or "",
        "phone": row.get("phone") or "",
        "location": row.get("location") or "",
        "bio": row.get("bio") or "",
        "tags": parse_tags(row.get("tags")),
        "status": row.get("status"),
        "lastLoginAt": row.get("last_login_at"),
    }
