"""
MongoDB Connection Setup

This module handles the MongoDB connection initialization using Beanie ODM
for the persisted chat store state.
"""

# ================================================
# MongoDB Connection Setup
# ================================================
from typing import Optional

from pymongo import AsyncMongoClient
from beanie import init_beanie
from config.settings import settings
from db.models.store_state import StoredState
import logfire

# ================================================
# MongoDB Connection String
# ================================================
MONGODB_CONNECTION_STRING = f"{settings.DB_CONNECTION_STRING}"

_client: Optional[AsyncMongoClient] = None


# ================================================
# Initialize MongoDB Connection
# ================================================
async def init_db():
    """
    Initialize MongoDB connection and Beanie ODM

    Raises:
        ConnectionError: If unable to connect to MongoDB or initialize Beanie
    """
    global _client
    try:
        logfire.info("Initializing MongoDB connection...")

        _client = AsyncMongoClient(MONGODB_CONNECTION_STRING)

        # Test connection
        await _client.admin.command("ping")
        logfire.info("MongoDB connection successful")

        await init_beanie(
            database=_client[settings.DB_NAME],
            document_models=[
                StoredState
            ],
        )

        logfire.info("Beanie ODM initialized successfully")

    except Exception as e:
        logfire.error(f"Failed to initialize MongoDB connection: {str(e)}")
        raise ConnectionError(f"Database initialization failed: {str(e)}")


# ================================================
# Close MongoDB Connection
# ================================================
async def close_db():
    """
    Close MongoDB connection
    """
    global _client
    if _client is None:
        return
    try:
        logfire.info("Closing MongoDB connection...")
        await _client.close()
        logfire.info("MongoDB connection closed")
    except Exception as e:
        logfire.error(f"Error closing MongoDB connection: {str(e)}")
    finally:
        _client = None
