"""
Check the MongoDB connection used by the gradebook backend.

Run from the repository root (with .env present):
  python scripts/check_connection.py
"""
import asyncio

from gradebook.config import DB_NAME, get_mongo_url
from gradebook.database import ATTENDANCE, GRADES, GROUPS, SETTINGS, create_client, ensure_indexes


async def check_connection(create_indexes: bool = False) -> bool:
    try:
        mongo_url = get_mongo_url()
    except ValueError as e:
        print(f"ERROR: {e}")
        return False

    print(f"Testing connection to: {mongo_url[:50]}...")
    print(f"Database name: {DB_NAME}")

    client = create_client()
    try:
        await client.admin.command('ping')
        print("SUCCESS: MongoDB connection successful!")

        db = client[DB_NAME]
        collections = await db.list_collection_names()
        print(f"Collections in '{DB_NAME}': {collections}")
        for name in (GROUPS, SETTINGS, ATTENDANCE, GRADES):
            if name in collections:
                count = await db[name].count_documents({})
                print(f"  {name}: {count} document(s)")
            else:
                print(f"  {name}: missing")

        if create_indexes:
            await ensure_indexes(db)
            print("Indexes ensured.")
        return True
    except Exception as e:
        print(f"ERROR: Connection failed: {e}")
        print("\nTroubleshooting tips:")
        print("1. Check your MONGO_URL in .env file")
        print("2. Ensure MongoDB network access allows your IP")
        print("3. Verify username and password are correct")
        print("4. Check if the attendance collection holds duplicate (group, subject, lesson, date) rows")
        return False
    finally:
        client.close()


if __name__ == "__main__":
    import sys

    ok = asyncio.run(check_connection(create_indexes="--indexes" in sys.argv))
    sys.exit(0 if ok else 1)
