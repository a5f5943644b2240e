"""Startup schema migrations.

Each migration is additive and inspects live metadata before altering, so it
is safe to run against a database in any earlier state. Applied migration ids
are recorded in ``schema_migrations``; a recorded id is never run again.

Order at startup: schema migrations, category seeding, then data migrations
(which may reference seeded categories by slug).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Set

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from addon_catalog import models
from addon_catalog.category_seeds import load_category_seeds

logger = logging.getLogger(__name__)

# Legacy multi-tag slugs folded into the fixed category list.
LEGACY_CATEGORY_MAP = {
    "items": "equipment",
    "blocks": "decoration",
    "biomes": "world-generation",
    "dimensions": "world-generation",
    "weapons": "equipment",
    "tools": "equipment",
    "armor": "equipment",
    "survival": "game-mechanics",
    "creative": "utility",
    "qol": "utility",
    "utilities": "utility",
    "tweaks": "game-mechanics",
    "overhaul": "game-mechanics",
}


@dataclass(frozen=True)
class Migration:
    id: str
    description: str
    apply: Callable[[Connection, Operations], None]


@dataclass
class MigrationReport:
    schema_applied: List[str] = field(default_factory=list)
    categories_seeded: int = 0
    data_applied: List[str] = field(default_factory=list)


def _ensure_column(conn: Connection, op: Operations, table_name: str, column: sa.Column) -> bool:
    """Add a column only if it does not already exist."""
    columns = {col["name"] for col in inspect(conn).get_columns(table_name)}
    if column.name in columns:
        return False
    op.add_column(table_name, column)
    logger.info("Added column %s.%s", table_name, column.name)
    return True


def _ensure_index(conn: Connection, op: Operations, name: str, table_name: str, columns: List[str]) -> bool:
    existing = {ix["name"] for ix in inspect(conn).get_indexes(table_name)}
    if name in existing:
        return False
    op.create_index(name, table_name, columns)
    logger.info("Created index %s on %s", name, table_name)
    return True


def _base_tables(conn: Connection, op: Operations) -> None:
    models.Base.metadata.create_all(conn, checkfirst=True)


def _users_role(conn: Connection, op: Operations) -> None:
    _ensure_column(
        conn, op, "users",
        sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
    )


def _package_extra_columns(conn: Connection, op: Operations) -> None:
    for column in (
        sa.Column("icon_url", sa.Text(), nullable=True),
        sa.Column("kofi_url", sa.Text(), nullable=True),
        sa.Column("long_description", sa.Text(), nullable=True),
        sa.Column("min_game_version", sa.String(length=32), nullable=True),
        sa.Column("max_game_version", sa.String(length=32), nullable=True),
        sa.Column("youtube_url", sa.Text(), nullable=True),
        sa.Column("discord_url", sa.Text(), nullable=True),
    ):
        _ensure_column(conn, op, "packages", column)

    added = _ensure_column(conn, op, "packages", sa.Column("category_id", sa.Integer(), nullable=True))
    # SQLite cannot ALTER in a constraint; fresh SQLite schemas get it from create_all
    if added and conn.dialect.name != "sqlite":
        op.create_foreign_key(
            "fk_packages_category_id", "packages", "categories",
            ["category_id"], ["id"], ondelete="SET NULL",
        )


def _download_history_indexes(conn: Connection, op: Operations) -> None:
    _ensure_index(conn, op, "ix_download_history_package_day", "download_history", ["package_id", "day"])
    _ensure_index(conn, op, "ix_download_history_day", "download_history", ["day"])


def _collapse_legacy_tags(conn: Connection, op: Operations) -> None:
    """Give tagged packages a single category, then fold legacy slugs into seeded ones."""
    if "package_tags" not in inspect(conn).get_table_names():
        return

    packages = models.Package.__table__
    categories = models.Category.__table__
    package_tags = models.PackageTag.__table__

    first_tags = conn.execute(
        sa.select(package_tags.c.package_id, sa.func.min(package_tags.c.category_id).label("category_id"))
        .group_by(package_tags.c.package_id)
    ).all()
    for row in first_tags:
        conn.execute(
            sa.update(packages)
            .where(packages.c.id == row.package_id, packages.c.category_id.is_(None))
            .values(category_id=row.category_id)
        )

    slug_ids = {row.slug: row.id for row in conn.execute(sa.select(categories.c.id, categories.c.slug))}
    remapped = 0
    for old_slug, new_slug in LEGACY_CATEGORY_MAP.items():
        old_id = slug_ids.get(old_slug)
        new_id = slug_ids.get(new_slug)
        if old_id is None or new_id is None:
            continue
        result = conn.execute(
            sa.update(packages).where(packages.c.category_id == old_id).values(category_id=new_id)
        )
        remapped += result.rowcount or 0
    logger.info("Collapsed legacy tags for %d packages, remapped %d", len(first_tags), remapped)


SCHEMA_MIGRATIONS: List[Migration] = [
    Migration("0001_base_tables", "create missing tables", _base_tables),
    Migration("0002_users_role", "users.role column", _users_role),
    Migration("0003_package_extra_columns", "optional package columns", _package_extra_columns),
    Migration("0004_download_history_indexes", "download history indexes", _download_history_indexes),
]

DATA_MIGRATIONS: List[Migration] = [
    Migration("0005_collapse_legacy_tags", "legacy tags to single category", _collapse_legacy_tags),
]


def _ensure_version_table(conn: Connection) -> None:
    models.SchemaMigration.__table__.create(conn, checkfirst=True)


def applied_migration_ids(conn: Connection) -> Set[str]:
    table = models.SchemaMigration.__table__
    return {row.id for row in conn.execute(sa.select(table.c.id))}


def _run_pending(conn: Connection, migrations: List[Migration]) -> List[str]:
    table = models.SchemaMigration.__table__
    applied = applied_migration_ids(conn)
    op = Operations(MigrationContext.configure(conn))
    ran: List[str] = []
    for migration in migrations:
        if migration.id in applied:
            continue
        migration.apply(conn, op)
        conn.execute(sa.insert(table).values(id=migration.id))
        logger.info("Applied migration %s (%s)", migration.id, migration.description)
        ran.append(migration.id)
    return ran


async def run_startup_migrations(engine: AsyncEngine) -> MigrationReport:
    """Migrate schema, seed categories, then run data migrations."""
    report = MigrationReport()

    async with engine.begin() as conn:
        await conn.run_sync(_ensure_version_table)
        report.schema_applied = await conn.run_sync(_run_pending, SCHEMA_MIGRATIONS)

    async with AsyncSession(engine, expire_on_commit=False) as session:
        report.categories_seeded = await load_category_seeds(session)

    async with engine.begin() as conn:
        report.data_applied = await conn.run_sync(_run_pending, DATA_MIGRATIONS)

    return report
