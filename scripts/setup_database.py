# scripts/setup_database.py
"""
Database setup script for Business Forge.
Creates the businesses, field_versions and agent_runs tables and verifies them.
"""

import asyncio
import os
import sys

import asyncpg
from infrastructure.storage.business_store import SCHEMA_STATEMENTS
from shared.logging import logger, setup_logging

EXPECTED_TABLES = {"businesses", "field_versions", "agent_runs"}


async def create_database_if_not_exists(admin_url: str, database_name: str):
    """Create database if it doesn't exist"""
    try:
        # Connect to postgres database to create our database
        admin_conn = await asyncpg.connect(admin_url)

        db_exists = await admin_conn.fetchval(
            "SELECT 1 FROM pg_database WHERE datname = $1", database_name
        )

        if not db_exists:
            await admin_conn.execute(f'CREATE DATABASE "{database_name}"')
            logger.info("Created database", database=database_name)
        else:
            logger.info("Database already exists", database=database_name)

        await admin_conn.close()

    except Exception as e:
        logger.error("Failed to create database", error=str(e))
        raise


async def setup_tables(database_url: str):
    """Create all required tables and indexes"""
    conn = await asyncpg.connect(database_url)

    try:
        logger.info("Creating database tables...")
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
        logger.info("Schema applied", statements=len(SCHEMA_STATEMENTS))
    finally:
        await conn.close()


async def verify_setup(database_url: str):
    """Verify tables exist and the staleness columns accept writes"""
    conn = await asyncpg.connect(database_url)

    try:
        logger.info("Verifying database setup...")

        tables = await conn.fetch("""
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public'
        """)
        found_tables = {row["table_name"] for row in tables}

        missing = EXPECTED_TABLES - found_tables
        if missing:
            raise RuntimeError(f"Missing tables: {sorted(missing)}")
        logger.info("All tables found", tables=sorted(EXPECTED_TABLES))

        test_id = "setup-verification"

        # Round-trip one business and one stale field row
        async with conn.transaction():
            await conn.execute("""
                INSERT INTO businesses (id, prompt, status)
                VALUES ($1, 'verification', 'pending')
                ON CONFLICT (id) DO NOTHING
            """, test_id)
            await conn.execute("""
                INSERT INTO field_versions (business_id, field_name, is_stale, stale_reason, stale_since)
                VALUES ($1, 'tagline', TRUE, 'verification', NOW())
                ON CONFLICT (business_id, field_name) DO NOTHING
            """, test_id)

            stale = await conn.fetchval("""
                SELECT COUNT(*) FROM field_versions WHERE business_id = $1 AND is_stale
            """, test_id)
            if stale != 1:
                raise RuntimeError("Failed to insert/query field version record")

            await conn.execute("DELETE FROM businesses WHERE id = $1", test_id)

        logger.info("Database verification completed successfully")

    except Exception as e:
        logger.error("Database verification failed", error=str(e))
        raise
    finally:
        await conn.close()


async def main():
    """Main setup function"""
    setup_logging(level="INFO", json_logs=False)

    logger.info("Starting Business Forge database setup")

    database_url = os.getenv("DATABASE_URL")

    if not database_url:
        # Default local development setup
        host = os.getenv("DB_HOST", "localhost")
        port = os.getenv("DB_PORT", "5432")
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "postgres")
        database = os.getenv("DB_NAME", "business_forge")

        database_url = f"postgresql://{user}:{password}@{host}:{port}/{database}"
        admin_url = f"postgresql://{user}:{password}@{host}:{port}/postgres"

        logger.info("Using database", host=host, port=port, database=database)

        try:
            await create_database_if_not_exists(admin_url, database)
        except Exception as e:
            logger.warning("Could not create database (may already exist)", error=str(e))

    try:
        await setup_tables(database_url)
        await verify_setup(database_url)
        logger.info("Database setup completed successfully")
    except Exception as e:
        logger.error("Database setup failed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
