"""Database health utilities."""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.database import engine as default_engine

logger = logging.getLogger(__name__)


async def check_db_connection(engine: AsyncEngine | None = None) -> bool:
    """Verify database connectivity.

    Schema creation lives in ``app.core.database.init_db`` for development;
    in production use Alembic migrations via ``alembic upgrade head``.
    """
    try:
        async with (engine or default_engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("Database health check failed: %s", exc)
        return False
