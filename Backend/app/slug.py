"""
URL slug generation for tenants, categories and products.
"""

import re
import unicodedata
from typing import Optional, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.responses import ApiError, ErrorCodes

ARABIC_TO_LATIN = {
    "ا": "a", "أ": "a", "إ": "i", "آ": "a", "ب": "b", "ت": "t", "ث": "th",
    "ج": "j", "ح": "h", "خ": "kh", "د": "d", "ذ": "dh", "ر": "r", "ز": "z",
    "س": "s", "ش": "sh", "ص": "s", "ض": "d", "ط": "t", "ظ": "z", "ع": "a",
    "غ": "gh", "ف": "f", "ق": "q", "ك": "k", "ل": "l", "م": "m", "ن": "n",
    "ه": "h", "و": "w", "ي": "y", "ى": "a", "ة": "h", "ؤ": "w", "ئ": "y",
}

MAX_SLUG_LENGTH = 100


def transliterate_arabic(value: str) -> str:
    return "".join(ARABIC_TO_LATIN.get(ch, ch) for ch in value)


def slugify(value: str, fallback: str = "item") -> str:
    """
    Generate a URL-safe slug.

    Rules:
    - Arabic letters transliterated to Latin
    - ASCII-safe (unicode -> ascii)
    - Lowercase, hyphens for spaces/special chars
    - No leading/trailing hyphens
    - Max 100 chars

    Examples:
        "Café Beauté" -> "cafe-beaute"
        "Hair & Nails!!!" -> "hair-nails"
        "عطور" -> "atwr"
    """
    if not value:
        return fallback

    normalized = unicodedata.normalize("NFKD", transliterate_arabic(value))
    ascii_str = normalized.encode("ascii", "ignore").decode("ascii")

    slug = re.sub(r"[^a-z0-9]+", "-", ascii_str.lower())
    slug = slug.strip("-")[:MAX_SLUG_LENGTH].rstrip("-")
    return slug or fallback


async def ensure_unique_slug(
    session: AsyncSession,
    model: Type,
    base_slug: str,
    tenant_id: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> str:
    """
    Ensure slug is unique by appending -2, -3, etc. if needed.

    When ``tenant_id`` is given uniqueness is checked within that tenant only.
    ``exclude_id`` lets an entity keep its own slug on update.
    """
    candidate = base_slug
    counter = 2

    while True:
        stmt = select(model.id).where(model.slug == candidate)
        if tenant_id is not None:
            stmt = stmt.where(model.tenant_id == tenant_id)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        result = await session.execute(stmt)
        if result.first() is None:
            return candidate

        candidate = f"{base_slug}-{counter}"
        counter += 1

        if counter > 1000:
            raise ApiError(
                500,
                ErrorCodes.INTERNAL_ERROR,
                "Unable to generate unique slug after 1000 attempts",
            )
