"""Database migration system: an ordered list of SQL scripts, each applied once."""
from typing import List, Tuple

import structlog
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from notes_backend.utils import now

logger = structlog.get_logger(__name__)

# Migration format: (version, description, sql). Statements are separated by ";".
MIGRATIONS: List[Tuple[int, str, str]] = [
    (
        1,
        "Create users table",
        """CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT 1,
    is_admin BOOLEAN NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)""",
    ),
    (
        2,
        "Create notes table",
        """CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    parent_id INTEGER REFERENCES notes(id) ON DELETE SET NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    icon TEXT,
    is_favorite BOOLEAN NOT NULL DEFAULT 0,
    position INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'normal',
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_notes_user_status ON notes(user_id, status);
CREATE INDEX IF NOT EXISTS idx_notes_parent ON notes(parent_id)""",
    ),
    (
        3,
        "Create sessions table",
        """CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    user_id INTEGER DEFAULT 0,
    data TEXT NOT NULL DEFAULT '',
    expires_at DATETIME NOT NULL,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at)""",
    ),
]


def _ensure_version_table(conn: Connection) -> None:
    conn.execute(text(
        "CREATE TABLE IF NOT EXISTS schema_migrations ("
        "version INTEGER PRIMARY KEY, description TEXT NOT NULL, applied_at DATETIME NOT NULL)"
    ))


def applied_versions(engine: Engine) -> List[int]:
    with engine.begin() as conn:
        _ensure_version_table(conn)
        rows = conn.execute(text("SELECT version FROM schema_migrations ORDER BY version"))
        return [row[0] for row in rows]


# PUBLIC_INTERFACE
def migrate(engine: Engine) -> int:
    """Apply pending migrations in version order. Returns how many were applied."""
    done = set(applied_versions(engine))
    count = 0
    for version, description, sql in sorted(MIGRATIONS, key=lambda m: m[0]):
        if version in done:
            continue
        logger.info("running_migration", version=version, description=description)
        with engine.begin() as conn:
            for statement in sql.split(";"):
                if statement.strip():
                    conn.exec_driver_sql(statement)
            conn.execute(
                text("INSERT INTO schema_migrations (version, description, applied_at) "
                     "VALUES (:version, :description, :applied_at)"),
                {"version": version, "description": description, "applied_at": now().isoformat()},
            )
        count += 1
    logger.info("migrations_complete", applied=count, total=len(MIGRATIONS))
    return count
