# backend/firewatch/database.py
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings


def create_db_engine(url: str):
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,  # reconnect after broker/db restarts
    )


def create_session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# 1. CONFIG DB: markets, devices, common codes
BaseConfig = declarative_base()

# 2. DATA DB: fire history, data reception
BaseData = declarative_base()

_config_engine = None
_data_engine = None


def get_config_engine():
    global _config_engine
    if _config_engine is None:
        _config_engine = create_db_engine(settings.CONFIG_DB_URL)
    return _config_engine


def get_data_engine():
    global _data_engine
    if _data_engine is None:
        _data_engine = create_db_engine(settings.DATA_DB_URL)
    return _data_engine


async def init_models(config_engine, data_engine):
    # Models must be imported so their tables land on the metadata
    from .models import device, code, history  # noqa: F401

    async with config_engine.begin() as conn:
        await conn.run_sync(BaseConfig.metadata.create_all)
    async with data_engine.begin() as conn:
        await conn.run_sync(BaseData.metadata.create_all)


async def dispose_engines():
    global _config_engine, _data_engine
    if _config_engine is not None:
        await _config_engine.dispose()
        _config_engine = None
    if _data_engine is not None:
        await _data_engine.dispose()
        _data_engine = None
