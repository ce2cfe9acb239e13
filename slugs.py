import re
import unicodedata
from typing import AbstractSet

FALLBACK_SLUG = "category"

_PUNCTUATION = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")


def slugify(value: str) -> str:
    """Lowercase, ASCII-only, dash-separated form of ``value``."""
    ascii_value = (
        unicodedata.normalize("NFKD", value or "")
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    slug = _PUNCTUATION.sub("", ascii_value.lower())
    slug = _SEPARATORS.sub("-", slug).strip("-")
    return slug or FALLBACK_SLUG


def resolve_slug(display_name: str, existing_slugs: AbstractSet[str]) -> str:
    """Return a slug for ``display_name`` that is not in ``existing_slugs``.

    The base slug is used when free, otherwise ``-1``, ``-2``, ... are appended
    until an unused candidate turns up. At most ``len(existing_slugs) + 1``
    candidates are tried.
    """
    base = slugify(display_name)
    if base not in existing_slugs:
        return base
    counter = 1
    while True:
        candidate = f"{base}-{counter}"
        if candidate not in existing_slugs:
            return candidate
        counter += 1
