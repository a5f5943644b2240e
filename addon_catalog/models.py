from sqlalchemy import (
    Column,
    String,
    DateTime,
    Integer,
    ForeignKey,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class User(Base):
    """Author accounts. Only identity and role are read by the catalog."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(32), unique=True, nullable=False)
    role = Column(String(32), nullable=False, default="user", server_default="user")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    packages = relationship("Package", back_populates="author")


class Category(Base):
    """Fixed category directory, seeded at startup."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), unique=True, nullable=False)
    slug = Column(String(32), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    packages = relationship("Package", back_populates="category")


class Package(Base):
    """Catalog entry for an uploaded add-on archive"""

    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), unique=True, nullable=False)
    description = Column(Text, nullable=False, default="", server_default="")
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    file_path = Column(Text, nullable=False, default="", server_default="")
    file_hash = Column(String(64), nullable=False, default="", server_default="")
    version = Column(String(32), nullable=False, default="1.0.0", server_default="1.0.0")
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    downloads = Column(Integer, nullable=False, default=0, server_default="0")
    icon_url = Column(Text, nullable=True)
    long_description = Column(Text, nullable=True)
    kofi_url = Column(Text, nullable=True)
    youtube_url = Column(Text, nullable=True)
    discord_url = Column(Text, nullable=True)
    min_game_version = Column(String(32), nullable=True)
    max_game_version = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    author = relationship("User", back_populates="packages")
    category = relationship("Category", back_populates="packages")
    download_history = relationship("DownloadHistory", back_populates="package", passive_deletes=True)


class PackageTag(Base):
    """Legacy many-to-many tag assignments, superseded by Package.category_id."""

    __tablename__ = "package_tags"

    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True)


class DownloadHistory(Base):
    """One row per package per calendar day (UTC)."""

    __tablename__ = "download_history"
    __table_args__ = (
        UniqueConstraint("package_id", "day", name="uq_download_history_package_day"),
        Index("ix_download_history_package_day", "package_id", "day"),
        Index("ix_download_history_day", "day"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    package_id = Column(Integer, ForeignKey("packages.id", ondelete="CASCADE"), nullable=False)
    # ISO YYYY-MM-DD; text keeps calendar arithmetic portable across dialects
    day = Column(String(10), nullable=False)
    download_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    package = relationship("Package", back_populates="download_history")


class SchemaMigration(Base):
    """Applied startup migrations, keyed by migration id."""

    __tablename__ = "schema_migrations"

    id = Column(String(64), primary_key=True)
    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
