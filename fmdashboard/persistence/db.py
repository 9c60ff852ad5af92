from __future__ import annotations

import logging
from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


logger = logging.getLogger(__name__)

# Storage-internal identity column; never exposed in returned records.
IDENTITY_FIELD = "_id"


def create_collection_engine(path: Path, *, echo: bool = False) -> AsyncEngine:
    # One SQLite file per collection keeps each entity kind independently owned on disk.
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("collection_open path=%s", path)
    return create_async_engine(f"sqlite+aiosqlite:///{path}", echo=echo)


def build_collection_table(name: str) -> sa.Table:
    return sa.Table(
        name,
        sa.MetaData(),
        sa.Column(IDENTITY_FIELD, sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("doc", sa.JSON, nullable=False),
    )
