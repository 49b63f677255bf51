"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "users",
    "waste_reports",
    "collector_applications",
    "pickup_tasks",
    "task_status_history",
    "chat_messages",
    "notifications",
]

_TABLES: dict[str, str] = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL UNIQUE,
            role TEXT NOT NULL CHECK (role IN ('resident', 'collector', 'admin')),
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('pending', 'active', 'suspended')),
            latitude REAL,
            longitude REAL,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "waste_reports": """
        CREATE TABLE IF NOT EXISTS waste_reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            resident_id INTEGER NOT NULL,
            waste_type TEXT NOT NULL DEFAULT 'general',
            description TEXT NOT NULL DEFAULT '',
            address TEXT NOT NULL DEFAULT '',
            latitude REAL,
            longitude REAL,
            status TEXT NOT NULL DEFAULT 'pending',
            assigned_collector_id INTEGER,
            completed_at TEXT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "collector_applications": """
        CREATE TABLE IF NOT EXISTS collector_applications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'approved', 'rejected')),
            reviewed_by INTEGER,
            reason TEXT,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "pickup_tasks": """
        CREATE TABLE IF NOT EXISTS pickup_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            report_id INTEGER NOT NULL,
            collector_id INTEGER NOT NULL,
            status TEXT NOT NULL CHECK (
                status IN ('scheduled', 'in_progress', 'completed', 'cancelled', 'rescheduled')
            ),
            scheduled_date TEXT NOT NULL,
            estimated_duration INTEGER NOT NULL DEFAULT 30 CHECK (estimated_duration >= 5),
            actual_start_time TEXT,
            actual_end_time TEXT,
            notes TEXT CHECK (notes IS NULL OR length(notes) <= 200),
            completion_notes TEXT CHECK (completion_notes IS NULL OR length(completion_notes) <= 300),
            images TEXT NOT NULL DEFAULT '[]',
            version INTEGER NOT NULL DEFAULT 1,
            created TEXT NOT NULL,
            updated TEXT NOT NULL
        )
    """,
    "task_status_history": """
        CREATE TABLE IF NOT EXISTS task_status_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id INTEGER NOT NULL,
            status TEXT NOT NULL,
            previous_status TEXT,
            actor_id INTEGER NOT NULL,
            note TEXT,
            occurred_at TEXT NOT NULL
        )
    """,
    "chat_messages": """
        CREATE TABLE IF NOT EXISTS chat_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            room TEXT NOT NULL,
            sender_id INTEGER NOT NULL,
            sender_name TEXT NOT NULL,
            sender_role TEXT NOT NULL,
            body TEXT NOT NULL,
            kind TEXT NOT NULL DEFAULT 'text' CHECK (kind IN ('text', 'system')),
            client_id TEXT,
            timestamp TEXT NOT NULL
        )
    """,
    "notifications": """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
            data TEXT NOT NULL DEFAULT '{}',
            is_read INTEGER NOT NULL DEFAULT 0,
            read_at TEXT,
            event_id TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            created TEXT NOT NULL,
            UNIQUE (user_id, event_id)
        )
    """,
}

_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users (email)",
    "CREATE INDEX IF NOT EXISTS idx_users_role ON users (role, status)",
    "CREATE INDEX IF NOT EXISTS idx_reports_resident ON waste_reports (resident_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_report ON pickup_tasks (report_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_collector ON pickup_tasks (collector_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_history_task ON task_status_history (task_id)",
    "CREATE INDEX IF NOT EXISTS idx_chat_room ON chat_messages (room, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, is_read)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_expiry ON notifications (expires_at)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes if they do not exist yet."""
    conn = await db_client.get_connection(db_path=db_path)

    for name in COLLECTIONS:
        await conn.execute(_TABLES[name])
    for statement in _INDEXES:
        await conn.execute(statement)
    await conn.commit()

    logger.info("Database schema initialized", extra={"collections": len(COLLECTIONS)})
