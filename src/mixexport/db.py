"""
SQLite Database Management for the mix export engine.

Manages the catalog snapshot, memberships, per-user credit counters,
credit reservations and download history.

- Credit counters only change through reserve/commit/release, each a
  single BEGIN IMMEDIATE transaction with a conditional UPDATE.
- One connection, shared across threads behind a re-entrant lock.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Sequence
from datetime import datetime, timezone

from .models import Entitlement, VideoAsset

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """SQLite database manager for export accounting."""

    SCHEMA_VERSION = 1

    # Commit outcomes
    COMMITTED = "committed"
    NOT_PENDING = "not_pending"
    RELEASED = "released"
    OVER_LIMIT = "over_limit"

    # SQL schema definition
    SCHEMA = """
    -- Membership plans: monthly download budget
    CREATE TABLE IF NOT EXISTS memberships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        price INTEGER NOT NULL DEFAULT 0,
        billing_cycle TEXT NOT NULL DEFAULT 'monthly',
        download_limit INTEGER NOT NULL
    );

    -- Users: membership and credit counters
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        membership_id INTEGER,
        membership_end_date TEXT,
        downloads_used INTEGER NOT NULL DEFAULT 0,
        downloads_reserved INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (membership_id) REFERENCES memberships(id),
        CHECK (downloads_used >= 0),
        CHECK (downloads_reserved >= 0)
    );

    -- Catalog snapshot read by the resolver
    CREATE TABLE IF NOT EXISTS videos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        duration_seconds REAL NOT NULL DEFAULT 0,
        content_key TEXT NOT NULL,
        thumbnail_key TEXT NOT NULL DEFAULT '',
        is_premium INTEGER NOT NULL DEFAULT 1,
        download_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    );

    -- Download history: one row per packaged track
    CREATE TABLE IF NOT EXISTS downloads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        video_id INTEGER NOT NULL,
        downloaded_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (video_id) REFERENCES videos(id)
    );

    -- Credits held by in-flight exports
    CREATE TABLE IF NOT EXISTS credit_reservations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        credits INTEGER NOT NULL,
        status TEXT NOT NULL,
        charged INTEGER,
        created_at TEXT NOT NULL,
        settled_at TEXT,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    -- Schema version tracking
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_downloads_user_id ON downloads(user_id);
    CREATE INDEX IF NOT EXISTS idx_reservations_status ON credit_reservations(status, created_at);
    """

    def __init__(self, db_path: str = "data/db/mixexport.sqlite"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self.conn = sqlite3.connect(
            str(self.db_path), check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        logger.info(f"Connected to database: {self.db_path}")
        self._initialize_schema()

    def disconnect(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database disconnected")

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @contextmanager
    def _transaction(self):
        """Serialized write transaction; rolls back on any exception."""
        assert self.conn is not None
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
            except BaseException:
                cursor.execute("ROLLBACK")
                raise
            else:
                cursor.execute("COMMIT")

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        assert self.conn is not None
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _initialize_schema(self) -> None:
        """Initialize or migrate schema."""
        assert self.conn is not None
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            )
            if not cursor.fetchone():
                logger.info("Initializing database schema...")
                cursor.executescript(self.SCHEMA)
                cursor.execute(
                    "INSERT INTO schema_version (version, updated_at) VALUES (?, ?)",
                    (self.SCHEMA_VERSION, _to_iso(_utcnow())),
                )
                logger.info(f"✅ Database schema initialized (v{self.SCHEMA_VERSION})")
            else:
                cursor.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
                current_version = cursor.fetchone()[0]
                if current_version < self.SCHEMA_VERSION:
                    logger.warning(
                        f"Schema version mismatch: {current_version} < {self.SCHEMA_VERSION}. "
                        f"Consider running migration."
                    )

    # ------------------------------------------------------------------
    # Catalog and accounts
    # ------------------------------------------------------------------

    def add_membership(
        self,
        name: str,
        download_limit: int,
        price: int = 0,
        billing_cycle: str = "monthly",
    ) -> int:
        """Create a membership plan and return its id."""
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO memberships (name, price, billing_cycle, download_limit)
                VALUES (?, ?, ?, ?)
                """,
                (name, price, billing_cycle, download_limit),
            )
            return cursor.lastrowid

    def add_user(
        self,
        username: str,
        email: str,
        membership_id: Optional[int] = None,
        membership_end_date: Optional[datetime] = None,
        downloads_used: int = 0,
    ) -> int:
        """Create a user and return its id."""
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO users (
                    username, email, membership_id, membership_end_date,
                    downloads_used, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    username,
                    email,
                    membership_id,
                    _to_iso(membership_end_date),
                    downloads_used,
                    _to_iso(_utcnow()),
                ),
            )
            return cursor.lastrowid

    def add_video(
        self,
        title: str,
        content_key: str,
        duration_seconds: float = 0.0,
        description: str = "",
        thumbnail_key: str = "",
        is_premium: bool = True,
        video_id: Optional[int] = None,
    ) -> int:
        """
        Add a video to the catalog snapshot.

        Args:
            title: Display title.
            content_key: Blob key of the full video.
            duration_seconds: Playback duration.
            description: Free text.
            thumbnail_key: Blob key of the thumbnail image.
            is_premium: Premium videos need an active membership.
            video_id: Explicit id, or None to auto-assign.

        Returns:
            The video id.
        """
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO videos (
                    id, title, description, duration_seconds, content_key,
                    thumbnail_key, is_premium, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    video_id,
                    title,
                    description,
                    duration_seconds,
                    content_key,
                    thumbnail_key,
                    1 if is_premium else 0,
                    _to_iso(_utcnow()),
                ),
            )
            logger.debug(f"Added video: {cursor.lastrowid} ({title})")
            return cursor.lastrowid

    def get_video_by_key(self, content_key: str) -> Optional[VideoAsset]:
        rows = self._query("SELECT * FROM videos WHERE content_key = ?", (content_key,))
        return self._row_to_asset(rows[0]) if rows else None

    def get_videos(self, video_ids: Iterable[int]) -> Dict[int, VideoAsset]:
        """
        Fetch catalog snapshots for a set of ids.

        Args:
            video_ids: Requested ids (duplicates and unknown ids allowed).

        Returns:
            Mapping of id to VideoAsset for the ids that exist.
        """
        unique_ids = sorted(set(video_ids))
        if not unique_ids:
            return {}
        placeholders = ",".join("?" for _ in unique_ids)
        rows = self._query(
            f"SELECT * FROM videos WHERE id IN ({placeholders})", unique_ids
        )
        return {row["id"]: self._row_to_asset(row) for row in rows}

    @staticmethod
    def _row_to_asset(row: sqlite3.Row) -> VideoAsset:
        return VideoAsset(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            duration_seconds=row["duration_seconds"],
            content_key=row["content_key"],
            thumbnail_key=row["thumbnail_key"],
            is_premium=bool(row["is_premium"]),
        )

    def get_entitlement(self, user_id: int) -> Optional[Entitlement]:
        """
        Read a user's membership and credit counters.

        Users without a plan get a download limit of 0.
        """
        rows = self._query(
            """
            SELECT u.id, u.membership_id, u.membership_end_date,
                   u.downloads_used, u.downloads_reserved,
                   COALESCE(m.download_limit, 0) AS download_limit
            FROM users u LEFT JOIN memberships m ON m.id = u.membership_id
            WHERE u.id = ?
            """,
            (user_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return Entitlement(
            user_id=row["id"],
            membership_id=row["membership_id"],
            membership_end_date=_from_iso(row["membership_end_date"]),
            download_limit=row["download_limit"],
            downloads_used=row["downloads_used"],
            downloads_reserved=row["downloads_reserved"],
        )

    # ------------------------------------------------------------------
    # Credit reservations
    # ------------------------------------------------------------------

    def reserve_credits(self, user_id: int, credits: int) -> Optional[int]:
        """
        Hold credits for an export if the budget allows it.

        The conditional UPDATE is the only admission check: concurrent
        callers cannot both pass against the same counters.

        Returns:
            Reservation id, or None if the budget is exhausted.
        """
        with self._transaction() as cursor:
            cursor.execute(
                """
                UPDATE users
                SET downloads_reserved = downloads_reserved + :n, updated_at = :now
                WHERE id = :uid
                  AND membership_id IS NOT NULL
                  AND downloads_used + downloads_reserved + :n <= (
                      SELECT download_limit FROM memberships WHERE id = users.membership_id
                  )
                """,
                {"n": credits, "uid": user_id, "now": _to_iso(_utcnow())},
            )
            if cursor.rowcount != 1:
                return None
            cursor.execute(
                """
                INSERT INTO credit_reservations (user_id, credits, status, created_at)
                VALUES (?, ?, 'pending', ?)
                """,
                (user_id, credits, _to_iso(_utcnow())),
            )
            return cursor.lastrowid

    def commit_reservation(self, reservation_id: int, video_ids: Sequence[int]) -> str:
        """
        Charge credits for the tracks that made it into the archive.

        Moves len(video_ids) credits from reserved to used, releases the
        rest, and writes one download row per track.

        Returns:
            COMMITTED, NOT_PENDING (already committed), RELEASED (released or
            expired before the job finished, or unknown) or OVER_LIMIT.
        """
        now = _to_iso(_utcnow())
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT user_id, credits, status FROM credit_reservations WHERE id = ?",
                (reservation_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return self.RELEASED
            if row["status"] == "committed":
                return self.NOT_PENDING
            if row["status"] != "pending":
                return self.RELEASED

            charged = len(video_ids)
            if charged > row["credits"]:
                raise ValueError(
                    f"Cannot charge {charged} credits against a reservation of {row['credits']}"
                )

            cursor.execute(
                """
                UPDATE users
                SET downloads_used = downloads_used + :charged,
                    downloads_reserved = downloads_reserved - :held,
                    updated_at = :now
                WHERE id = :uid
                  AND downloads_used + :charged <= COALESCE((
                      SELECT download_limit FROM memberships WHERE id = users.membership_id
                  ), 0)
                """,
                {"charged": charged, "held": row["credits"], "uid": row["user_id"], "now": now},
            )
            if cursor.rowcount != 1:
                return self.OVER_LIMIT

            cursor.executemany(
                "INSERT INTO downloads (user_id, video_id, downloaded_at) VALUES (?, ?, ?)",
                [(row["user_id"], video_id, now) for video_id in video_ids],
            )
            cursor.executemany(
                "UPDATE videos SET download_count = download_count + 1 WHERE id = ?",
                [(video_id,) for video_id in video_ids],
            )
            cursor.execute(
                """
                UPDATE credit_reservations SET status = 'committed', charged = ?, settled_at = ?
                WHERE id = ?
                """,
                (charged, now, reservation_id),
            )
            return self.COMMITTED

    def release_reservation(self, reservation_id: int) -> bool:
        """
        Return held credits without charging anything.

        Returns:
            True if a pending reservation was released.
        """
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT user_id, credits, status FROM credit_reservations WHERE id = ?",
                (reservation_id,),
            )
            row = cursor.fetchone()
            if row is None or row["status"] != "pending":
                return False
            self._release(cursor, reservation_id, row["user_id"], row["credits"], "released")
            return True

    def release_stale_reservations(self, cutoff: datetime) -> int:
        """
        Release pending reservations created before cutoff.

        Returns:
            Number of reservations released.
        """
        with self._transaction() as cursor:
            cursor.execute(
                """
                SELECT id, user_id, credits FROM credit_reservations
                WHERE status = 'pending' AND created_at < ?
                """,
                (_to_iso(cutoff),),
            )
            stale = cursor.fetchall()
            for row in stale:
                self._release(cursor, row["id"], row["user_id"], row["credits"], "expired")
        if stale:
            logger.warning(f"Released {len(stale)} stale credit reservations")
        return len(stale)

    @staticmethod
    def _release(cursor: sqlite3.Cursor, reservation_id: int, user_id: int, credits: int, status: str) -> None:
        now = _to_iso(_utcnow())
        cursor.execute(
            """
            UPDATE users SET downloads_reserved = downloads_reserved - ?, updated_at = ?
            WHERE id = ?
            """,
            (credits, now, user_id),
        )
        cursor.execute(
            "UPDATE credit_reservations SET status = ?, charged = 0, settled_at = ? WHERE id = ?",
            (status, now, reservation_id),
        )

    def get_reservation(self, reservation_id: int) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT * FROM credit_reservations WHERE id = ?", (reservation_id,))
        return dict(rows[0]) if rows else None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def list_downloads(self, user_id: int) -> List[Dict[str, Any]]:
        """Download history for a user, oldest first."""
        rows = self._query(
            """
            SELECT video_id, downloaded_at FROM downloads
            WHERE user_id = ? ORDER BY id ASC
            """,
            (user_id,),
        )
        return [dict(row) for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get database statistics.

        Returns:
            Dictionary with catalog, account and accounting counts.
        """
        def count(sql: str) -> int:
            return self._query(sql)[0][0]

        return {
            "total_videos": count("SELECT COUNT(*) FROM videos"),
            "premium_videos": count("SELECT COUNT(*) FROM videos WHERE is_premium = 1"),
            "total_users": count("SELECT COUNT(*) FROM users"),
            "total_downloads": count("SELECT COUNT(*) FROM downloads"),
            "pending_reservations": count(
                "SELECT COUNT(*) FROM credit_reservations WHERE status = 'pending'"
            ),
        }
