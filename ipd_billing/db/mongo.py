import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from ipd_billing.core.config import settings

logger = logging.getLogger(__name__)

class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    # tz_aware so stored timestamps come back comparable with datetime.now(timezone.utc)
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    mongodb.client = None
    mongodb.db = None
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    ledger = mongodb.db[settings.LEDGER_COLLECTION]
    await ledger.create_index("patient_id")
    # Reconciliation scan: discharged records still holding an unclaimed bed
    await ledger.create_index([("discharged_at", 1), ("bed", 1), ("bed_release_started_at", 1)])

    beds = mongodb.db[settings.BEDS_COLLECTION]
    await beds.create_index([("room_type", 1), ("bed_id", 1)], unique=True)

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
