import re
import uuid
from typing import Callable

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase alphanumerics joined by single hyphens."""
    slug = _NON_SLUG.sub("-", (text or "").lower()).strip("-")
    return slug or uuid.uuid4().hex[:8]


def unique_slug(text: str, exists: Callable[[str], bool]) -> str:
    """slugify(text), suffixed with -2, -3, ... until ``exists`` is False."""
    base = slugify(text)
    candidate = base
    counter = 2
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate
