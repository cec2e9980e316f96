from ipd_billing.db.mongo import mongodb, connect_to_mongo, close_mongo_connection


async def get_database():
    """Return the active database connection, connecting on first use."""
    if mongodb.db is None:
        await connect_to_mongo()
    return mongodb.db


__all__ = ["get_database", "connect_to_mongo", "close_mongo_connection"]
