import os
import re
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings

# options=-csearch_path%3D{schema} or options=-c+search_path={schema}
_SEARCH_PATH_OPTION = re.compile(r"[?&]options=-c(?:\+|%20)?search_path(?:%3D|=)(\w+)", re.IGNORECASE)
_SCHEMA_ENVIRONMENTS = ("dev", "staging", "prod")


def _get_schema_and_clean_url(url: str) -> tuple[str, str]:
    """Return (schema, url without the search_path option).

    asyncpg rejects the libpq ``options`` parameter, so the schema is pulled
    out of the URL here and applied through ``server_settings`` instead.
    Without it the schema follows ENVIRONMENT, else ``public``.
    """
    match = _SEARCH_PATH_OPTION.search(url)
    if match is None:
        env = os.getenv("ENVIRONMENT", "").lower()
        return (env if env in _SCHEMA_ENVIRONMENTS else "public"), url

    # keep a leading "?" so any parameters that follow stay in the query string
    clean_url = _SEARCH_PATH_OPTION.sub(lambda m: "?" if m.group(0).startswith("?") else "", url)
    clean_url = re.sub(r"\?&", "?", clean_url).rstrip("?")
    return match.group(1), clean_url


_db_schema, _clean_db_url = _get_schema_and_clean_url(settings.DATABASE_URL)

# - NullPool: each retrieval sub-query opens its own short-lived session, the
#   external pooler (pgbouncer) does the pooling
# - statement_cache_size=0 / unnamed statements: pgbouncer transaction mode
# - search_path: schema isolation + public for the vector extension
_search_path = f"{_db_schema},public"
engine = create_async_engine(
    _clean_db_url,
    echo=settings.DEBUG,
    poolclass=NullPool,
    connect_args={
        "statement_cache_size": 0,
        "prepared_statement_name_func": lambda: "",
        "server_settings": {"search_path": _search_path},
    },
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def get_db_schema() -> str:
    """Schema the engine is bound to (used by init_db)."""
    return _db_schema


async def get_db():
    """Dependency that yields a database session for request scope."""
    async with async_session_factory() as session:
        yield session


def get_session_factory():
    """Dependency that returns the session factory.

    Retrieval fans out concurrent reads, each on its own session, so services
    take the factory rather than a single session.
    """
    return async_session_factory
