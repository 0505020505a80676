import os
import time
from typing import Dict, Optional, Protocol, Tuple

from databases import Database

from iptvresolver.config.settings import settings
from iptvresolver.utils.logger import database_logger

# ===========================
# Database Instance
# ===========================
database = Database(settings.get_database_url())


# ===========================
# Key/Value Store Protocol
# ===========================
class KeyValueStore(Protocol):

    async def get(self, namespace: str, key: str) -> Optional[str]:
        ...

    async def set(self, namespace: str, key: str, value: str) -> None:
        ...


# ===========================
# Schema Creation
# ===========================
async def ensure_schema(db: Database, database_type: str, version: str):
    await db.execute("CREATE TABLE IF NOT EXISTS db_version (id INTEGER PRIMARY KEY CHECK (id = 1), version TEXT)")
    current_version = await db.fetch_val("SELECT version FROM db_version WHERE id = 1")

    if current_version != version:
        if database_type == "sqlite":
            await db.execute("DROP TABLE IF EXISTS kv_store")
            await db.execute("INSERT OR REPLACE INTO db_version VALUES (1, :version)", {"version": version})
        else:
            await db.execute("DROP TABLE IF EXISTS kv_store CASCADE")
            await db.execute(
                "INSERT INTO db_version VALUES (1, :version) ON CONFLICT (id) DO UPDATE SET version = :version",
                {"version": version}
            )

    await db.execute(
        "CREATE TABLE IF NOT EXISTS kv_store ("
        "namespace TEXT NOT NULL, store_key TEXT NOT NULL, value TEXT NOT NULL, updated_at INTEGER, "
        "PRIMARY KEY (namespace, store_key))"
    )


# ===========================
# Database Setup
# ===========================
async def setup_database():
    if settings.DATABASE_TYPE == "memory":
        database_logger.info("Persistence disabled, using in-memory store")
        return

    try:
        database_logger.info(f"Setup {settings.DATABASE_TYPE} database")
        if settings.DATABASE_TYPE == "sqlite":
            os.makedirs(os.path.dirname(settings.DATABASE_PATH), exist_ok=True)
            if not os.path.exists(settings.DATABASE_PATH):
                open(settings.DATABASE_PATH, "a").close()

        await database.connect()
        database_logger.info("Connected")

        await ensure_schema(database, settings.DATABASE_TYPE, settings.DATABASE_VERSION)

        if settings.DATABASE_TYPE == "sqlite":
            await database.execute("PRAGMA busy_timeout=30000")
            await database.execute("PRAGMA journal_mode=WAL")
            await database.execute("PRAGMA synchronous=NORMAL")

        database_logger.info("Setup completed")

    except Exception as e:
        database_logger.error(f"Setup failed: {type(e).__name__}")
        raise


# ===========================
# Database Store
# ===========================
class DatabaseStore:

    def __init__(self, db: Database, database_type: str = "sqlite"):
        self.db = db
        self.database_type = database_type

    async def get(self, namespace: str, key: str) -> Optional[str]:
        return await self.db.fetch_val(
            "SELECT value FROM kv_store WHERE namespace = :namespace AND store_key = :store_key",
            {"namespace": namespace, "store_key": key}
        )

    async def set(self, namespace: str, key: str, value: str) -> None:
        if self.database_type == "sqlite":
            query = """INSERT OR REPLACE INTO kv_store (namespace, store_key, value, updated_at)
                       VALUES (:namespace, :store_key, :value, :updated_at)"""
        else:
            query = """INSERT INTO kv_store (namespace, store_key, value, updated_at)
                       VALUES (:namespace, :store_key, :value, :updated_at)
                       ON CONFLICT (namespace, store_key) DO UPDATE
                       SET value = :value, updated_at = :updated_at"""

        await self.db.execute(query, {
            "namespace": namespace,
            "store_key": key,
            "value": value,
            "updated_at": int(time.time())
        })


# ===========================
# Memory Store
# ===========================
class MemoryStore:

    def __init__(self):
        self.values: Dict[Tuple[str, str], str] = {}

    async def get(self, namespace: str, key: str) -> Optional[str]:
        return self.values.get((namespace, key))

    async def set(self, namespace: str, key: str, value: str) -> None:
        self.values[(namespace, key)] = value


# ===========================
# Store Factory
# ===========================
def create_store() -> KeyValueStore:
    if settings.DATABASE_TYPE == "memory":
        return MemoryStore()
    return DatabaseStore(database, settings.DATABASE_TYPE)


# ===========================
# Database Teardown
# ===========================
async def teardown_database():
    if not database.is_connected:
        return

    try:
        await database.disconnect()
        database_logger.info("Disconnected")
    except Exception as e:
        database_logger.error(f"Failed to disconnect: {type(e).__name__}")
