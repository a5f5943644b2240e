from __future__ import annotations

from typing import Dict, List

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from addon_catalog.models import Category

CATEGORY_SEEDS: List[Dict[str, str]] = [
    # Gameplay
    {"name": "Adventure", "slug": "adventure"},
    {"name": "Decoration", "slug": "decoration"},
    {"name": "Economy", "slug": "economy"},
    {"name": "Equipment", "slug": "equipment"},
    {"name": "Food", "slug": "food"},
    {"name": "Game Mechanics", "slug": "game-mechanics"},
    {"name": "Magic", "slug": "magic"},
    {"name": "Management", "slug": "management"},
    {"name": "Minigame", "slug": "minigame"},
    {"name": "Mobs", "slug": "mobs"},
    {"name": "Optimisation", "slug": "optimisation"},
    {"name": "Social", "slug": "social"},
    {"name": "Storage", "slug": "storage"},
    {"name": "Technology", "slug": "technology"},
    {"name": "Transportation", "slug": "transportation"},
    {"name": "Utility", "slug": "utility"},
    {"name": "World Generation", "slug": "world-generation"},
    # Server-side
    {"name": "Administration", "slug": "administration"},
    {"name": "Anti-Cheat", "slug": "anti-cheat"},
    {"name": "Chat", "slug": "chat"},
    {"name": "Moderation", "slug": "moderation"},
    {"name": "Permissions", "slug": "permissions"},
]


def _insert_ignore(dialect_name: str):
    if dialect_name == "postgresql":
        return pg_insert(Category)
    if dialect_name == "sqlite":
        return sqlite_insert(Category)
    raise RuntimeError(f"Unsupported database dialect: {dialect_name}")


async def load_category_seeds(db: AsyncSession) -> int:
    """Insert the fixed categories, ignoring any that already exist.

    Returns the number of rows actually inserted.
    """
    dialect_name = getattr(getattr(db.bind, "dialect", None), "name", "")
    inserted = 0
    for seed in CATEGORY_SEEDS:
        stmt = _insert_ignore(dialect_name).values(name=seed["name"], slug=seed["slug"]).on_conflict_do_nothing()
        result = await db.execute(stmt)
        inserted += getattr(result, "rowcount", 0) or 0
    await db.commit()
    return inserted
