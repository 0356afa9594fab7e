import hashlib
import uuid
from datetime import datetime, UTC

def make_id(prefix: str) -> str:
    """Generate a unique ID with a given prefix."""
    return f"{prefix}_{uuid.uuid4()}"

def time_now() -> str:
    """Return the current time in ISO format (UTC, microseconds kept so updates order correctly)."""
    return datetime.now(UTC).isoformat()

def split_tags(raw) -> list:
    """Normalize tags given as a comma separated string or a list into a de-duplicated list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    tags = []
    for tag in raw:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags

def hash_password(password: str) -> str:
    """Hash a password with SHA-256 for storage."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()
