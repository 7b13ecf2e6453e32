import asyncio
import sqlite3
import time


class BridgeDB:
    def __init__(self, path):
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS topics (
                identifier TEXT PRIMARY KEY,
                thread_id INTEGER NOT NULL,
                display_name TEXT,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS special_topics (
                kind TEXT PRIMARY KEY,
                thread_id INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS users (
                source_id TEXT PRIMARY KEY,
                name TEXT,
                phone TEXT,
                updated_at INTEGER NOT NULL
            );
            CREATE TABLE IF NOT EXISTS messages (
                message_id TEXT PRIMARY KEY,
                sender TEXT,
                chat TEXT,
                content TEXT,
                message_type TEXT,
                created_at INTEGER NOT NULL
            );
            """
        )
        self.conn.commit()
        self.lock = asyncio.Lock()

    async def load_topics(self):
        async with self.lock:
            rows = self.conn.execute(
                "SELECT identifier, thread_id, display_name FROM topics"
            ).fetchall()
            special = self.conn.execute(
                "SELECT kind, thread_id FROM special_topics"
            ).fetchall()
        forward = {}
        reverse = {}
        names = {}
        for identifier, thread_id, display_name in rows:
            # a thread handed to a newer identifier supersedes the older row
            stale = reverse.get(thread_id)
            if stale is not None:
                forward.pop(stale, None)
            forward[identifier] = thread_id
            reverse[thread_id] = identifier
            names[identifier] = display_name
        specials = dict(special)
        return {
            "forward": forward,
            "reverse": reverse,
            "names": names,
            "status": specials.get("status"),
            "call": specials.get("call"),
        }

    async def save_topic(self, identifier, thread_id, display_name):
        async with self.lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO topics (identifier, thread_id, display_name, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (identifier, thread_id, display_name, int(time.time())),
            )
            self.conn.commit()

    async def save_special_topic(self, kind, thread_id):
        async with self.lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO special_topics (kind, thread_id, updated_at)
                VALUES (?, ?, ?)
                """,
                (kind, thread_id, int(time.time())),
            )
            self.conn.commit()

    async def save_user(self, source_id, name, phone):
        async with self.lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO users (source_id, name, phone, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (source_id, name, phone, int(time.time())),
            )
            self.conn.commit()

    async def save_message(self, message_id, sender, chat, content, message_type):
        if message_id is None:
            return
        async with self.lock:
            self.conn.execute(
                """
                INSERT OR IGNORE INTO messages
                (message_id, sender, chat, content, message_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (str(message_id), sender, chat, content, message_type, int(time.time())),
            )
            self.conn.commit()

    async def get_stats(self):
        collections = {}
        async with self.lock:
            for table in ("topics", "users", "messages"):
                row = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                collections[table] = row[0] if row else 0
        return {"type": "sqlite", "collections": collections}

    def close(self):
        self.conn.close()
