"""
=============================================================================
RASPADINHA - Conexão com o Banco
=============================================================================
"""

from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .models import Base


def create_session_factory(database_url: str, echo: bool = False) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Cria o engine async e a fábrica de sessões."""
    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    # Os registros são montados antes do commit; nada é recarregado depois
    factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine, factory


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
