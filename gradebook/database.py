import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from gradebook.config import DB_NAME, get_mongo_url

logger = logging.getLogger(__name__)

GROUPS = "groups"
USERS = "users"
SETTINGS = "settings"
ATTENDANCE = "attendance"
GRADES = "grades"


def create_client() -> AsyncIOMotorClient:
    try:
        return AsyncIOMotorClient(get_mongo_url(), serverSelectionTimeoutMS=5000)
    except Exception as e:
        logger.error(f"Failed to create MongoDB client: {e}")
        raise


def get_database(client: AsyncIOMotorClient) -> AsyncIOMotorDatabase:
    return client[DB_NAME]


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    # One attendance entry per (group, subject, variant, date); upserts rely on it.
    await db[ATTENDANCE].create_index(
        [("group_id", 1), ("subject_id", 1), ("lesson_variant", 1), ("date", 1)],
        unique=True,
        name="attendance_identity",
    )
    await db[ATTENDANCE].create_index([("id", 1)])
    await db[ATTENDANCE].create_index([("teacher_id", 1)])
    await db[GRADES].create_index([("id", 1)])
    await db[GRADES].create_index([("student_id", 1), ("subject_id", 1)])
    await db[GRADES].create_index([("group_id", 1), ("subject_id", 1), ("date", 1)])
    await db[GRADES].create_index([("teacher_id", 1)])
    await db[GROUPS].create_index([("id", 1)])
    await db[USERS].create_index([("id", 1)])
