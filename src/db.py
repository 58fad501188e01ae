import pathlib

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.load_secrets import db_name, host, password, port, sqlite_path, user


def database_url() -> str:
    """aiosqlite file when SQLITE_PATH is set, Postgres through asyncpg otherwise"""
    if sqlite_path:
        return f"sqlite+aiosqlite:///{pathlib.Path(sqlite_path)}"
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"


if sqlite_path:
    engine = create_async_engine(url=database_url(), echo=False)
else:
    engine = create_async_engine(database_url(), pool_size=20, max_overflow=20)

# Centralized session factory; components receive it through their constructors.
Session = async_sessionmaker(
    autocommit=False,
    class_=AsyncSession,
    autoflush=True,
    expire_on_commit=False,
    bind=engine,
)
