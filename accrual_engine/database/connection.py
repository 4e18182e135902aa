import re
import logging
from datetime import timezone

import motor.motor_asyncio
from beanie import init_beanie

from accrual_engine.database.models import LoanRecord, QueuedNotification
from accrual_engine.core import Settings

logger = logging.getLogger(__name__)

# Global database instance
database = None


def _mask_mongo_uri(uri: str) -> str:
    # Never log credentials embedded in the connection string
    m = re.match(r'(?P<prefix>mongodb(?:\+srv)?://)(?:(?P<creds>[^@]+)@)?(?P<rest>.+)', uri or "")
    if not m:
        return "mongodb://<redacted>"
    host_part = m.group('rest').split('/')[0]
    return f"{m.group('prefix')}***@{host_part}"


async def init_db():
    global database
    try:
        mongodb_uri = Settings.MONGODB_URI
        mongodb_db_name = Settings.MONGODB_DB_NAME

        if not mongodb_uri:
            logger.error("MONGODB_URI is not set in environment variables")
            raise ValueError("MONGODB_URI is not set in environment variables")
        if not mongodb_db_name:
            logger.error("MONGODB_DB_NAME is not set in environment variables")
            raise ValueError("MONGODB_DB_NAME is not set in environment variables")

        logger.info(f"Attempting to connect to MongoDB at: {_mask_mongo_uri(mongodb_uri)}")
        logger.info("Database name: %s", mongodb_db_name)

        # Each query carries its own connection and read timeouts
        client = motor.motor_asyncio.AsyncIOMotorClient(
            mongodb_uri,
            tls=Settings.MONGODB_TLS,
            serverSelectionTimeoutMS=30000,
            connectTimeoutMS=30000,
            socketTimeoutMS=30000,
            retryWrites=True,
            w='majority',
            # Stored datetimes are UTC; read them back as aware values
            tz_aware=True,
            tzinfo=timezone.utc,
        )

        await client.admin.command('ping')
        logger.info("Successfully connected to MongoDB!")

        database = client[mongodb_db_name]

        await init_beanie(database, document_models=[LoanRecord, QueuedNotification])
        logger.info("Beanie initialized successfully!")

        return database

    except ValueError as e:
        logger.error(f"Configuration error: {str(e)}")
        raise RuntimeError(f"Configuration error: {str(e)}") from e
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        logger.error(f"Exception type: {type(e)}")
        raise


def get_database():
    """Get the initialized database instance"""
    if database is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return database
