import asyncio
import sys

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from core.database import engine, get_db_schema
from models import Base

# Indexes SQLAlchemy metadata cannot express; must match the queries in core/services/context_store.py
SEARCH_INDEXES = [
    (
        "CREATE INDEX IF NOT EXISTS ix_contexts_search_vector ON contexts USING gin ("
        "(setweight(to_tsvector('simple'::regconfig, coalesce(title, '')), 'A') || "
        "setweight(to_tsvector('simple'::regconfig, coalesce(body, '')), 'B')))"
    ),
    "CREATE INDEX IF NOT EXISTS ix_contexts_embedding ON contexts USING hnsw (embedding vector_cosine_ops)",
]


async def init_models(reset: bool = False):
    schema = get_db_schema()
    print(f"Using database schema: {schema}")

    retries = 5
    while retries > 0:
        try:
            async with engine.begin() as conn:
                if reset:
                    print(f"Dropping schema '{schema}' and recreating...")
                    await conn.execute(text(f"DROP SCHEMA IF EXISTS {schema} CASCADE"))

                # Create schema if it doesn't exist
                print(f"Creating schema '{schema}' if not exists...")
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))

                # Enable pgvector extension (in public schema, shared across all schemas)
                print("Enabling pgvector extension...")
                await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector SCHEMA public"))

                await conn.execute(text(f"SET search_path TO {schema}, public"))

                print(f"Creating SQLAlchemy tables in '{schema}' schema...")
                await conn.run_sync(Base.metadata.create_all)

                print("Creating full-text and vector indexes...")
                for statement in SEARCH_INDEXES:
                    await conn.execute(text(statement))

            print(f"Database initialization complete for schema '{schema}'.")
            return
        except OperationalError as e:
            print(f"Database not ready yet ({e}), retrying in 2 seconds...")
            retries -= 1
            await asyncio.sleep(2)

    print("Could not connect to database after retries.")


if __name__ == "__main__":
    reset = "--reset" in sys.argv
    asyncio.run(init_models(reset=reset))
