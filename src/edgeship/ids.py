"""Identifier helpers."""

import re
from uuid import uuid4

_SLUG_INVALID = re.compile(r"[^a-z0-9-]+")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def slugify(value: str) -> str:
    """Lower-case DNS-safe label used in worker names and route hosts."""
    slug = _SLUG_INVALID.sub("-", str(value).strip().lower()).strip("-")
    return re.sub(r"-{2,}", "-", slug) or "app"
