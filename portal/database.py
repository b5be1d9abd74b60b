"""
Portal Database Module

SQLite credential store: users, sessions and registration tokens.
The schema itself is owned by the migrations in db/migrations.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


DEFAULT_USERS = [
    {
        "name": "Олексій",
        "email": "employee@company.com",
        "department": "Розробка",
        "password": "password123",
        "is_admin": False,
    },
    {
        "name": "Адміністратор",
        "email": "admin@company.com",
        "department": "Адміністрування",
        "password": "admin12345",
        "is_admin": True,
    },
]

# Columns an admin may change through update_user
USER_UPDATABLE_COLUMNS = (
    "name", "email", "department", "password", "is_admin",
    "job_title", "phone", "location", "bio", "tags", "status",
)


class Database:
    """SQLite database wrapper for the portal."""

    def __init__(self, db_path: str = "db/employee_portal.sqlite",
                 check_same_thread: bool = True):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.check_same_thread = check_same_thread
        self.conn: Optional[sqlite3.Connection] = None
        self._transaction_depth = 0

    def connect(self) -> sqlite3.Connection:
        """Connect to the database."""
        if self.conn is None:
            self.conn = sqlite3.connect(
                self.db_path, check_same_thread=self.check_same_thread
            )
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
        return self.conn

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Nested blocks join the outermost transaction; only the outermost
        block commits or rolls back.
        """
        conn = self.connect()
        if self._transaction_depth == 0:
            if conn.in_transaction:
                # Settle a statement-level transaction left open by a failed write
                conn.commit()
            conn.execute("BEGIN")
        self._transaction_depth += 1
        try:
            yield conn
        except BaseException:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                conn.rollback()
            raise
        self._transaction_depth -= 1
        if self._transaction_depth == 0:
            conn.commit()

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    def _commit(self):
        """Commit a single-statement write unless a transaction block is open."""
        if not self.in_transaction:
            self.connect().commit()

    # --- User Operations ---

    def create_user(self, name: str, email: str, password: str,
                    department: str = "", is_admin: bool = False,
                    job_title: str = "", phone: str = "", location: str = "",
                    bio: str = "", tags: str = "[]", status: str = None) -> int:
        """Create a new user. Raises sqlite3.IntegrityError on a duplicate email."""
        conn = self.connect()
        cursor = conn.execute(
            """INSERT INTO users (name, email, department, password, is_admin,
                                  job_title, phone, location, bio, tags, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, COALESCE(?, 'Активний'))""",
            (name, email.lower(), department, password, 1 if is_admin else 0,
             job_title, phone, location, bio, tags, status)
        )
        self._commit()
        return cursor.lastrowid

    def get_user_by_id(self, user_id: int) -> Optional[dict]:
        """Get a user by ID."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[dict]:
        """Get a user by email, ignoring case."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM users WHERE LOWER(email) = LOWER(?)", (email,)
        ).fetchone()
        return dict(row) if row else None

    def get_all_users(self) -> list[dict]:
        """Get all users ordered by ID."""
        conn = self.connect()
        rows = conn.execute("SELECT * FROM users ORDER BY id ASC").fetchall()
        return [dict(row) for row in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """
        Update a user, keeping the current value of every column passed as None.

        Returns:
            True if the user exists
        """
        unknown = set(fields) - set(USER_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown user columns: {', '.join(sorted(unknown))}")

        if fields.get("email"):
            fields["email"] = fields["email"].lower()
        if fields.get("is_admin") is not None:
            fields["is_admin"] = 1 if fields["is_admin"] else 0

        assignments = ", ".join(
            f"{column} = COALESCE(?, {column})" for column in fields
        )
        if not assignments:
            return self.get_user_by_id(user_id) is not None

        conn = self.connect()
        cursor = conn.execute(
            f"UPDATE users SET {assignments} WHERE id = ?",
            (*fields.values(), user_id)
        )
        self._commit()
        return cursor.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user. Their sessions go with them (ON DELETE CASCADE)."""
        conn = self.connect()
        cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        self._commit()
        return cursor.rowcount > 0

    def update_last_login(self, user_id: int):
        """Update user's last login timestamp."""
        conn = self.connect()
        conn.execute(
            "UPDATE users SET last_login_at = datetime('now') WHERE id = ?",
            (user_id,)
        )
        self._commit()

    def update_user_status(self, user_id: int, status: str):
        """Set a user's freeform status string."""
        conn = self.connect()
        conn.execute(
            "UPDATE users SET status = ? WHERE id = ?", (status, user_id)
        )
        self._commit()

    def get_user_count(self) -> int:
        """Get total number of users."""
        conn = self.connect()
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]

    def seed_default_users(self, users: list[dict] = None) -> list[str]:
        """
        Insert default accounts whose email is not taken yet.

        Returns:
            Emails of the accounts that were created
        """
        created = []
        for user in users if users is not None else DEFAULT_USERS:
            if self.get_user_by_email(user["email"]):
                continue
            self.create_user(
                name=user["name"],
                email=user["email"],
                password=user["password"],
                department=user.get("department", ""),
                is_admin=user.get("is_admin", False),
            )
            created.append(user["email"].lower())
        return created

    # --- Session Operations ---

    def insert_session(self, token: str, user_id: int):
        """Insert a session row. Raises sqlite3.IntegrityError on a token collision."""
        conn = self.connect()
        conn.execute(
            "INSERT INTO sessions (token, user_id) VALUES (?, ?)",
            (token, user_id)
        )
        self._commit()

    def delete_session(self, token: str) -> bool:
        """Delete a session row, reporting whether one was removed."""
        conn = self.connect()
        cursor = conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
        self._commit()
        return cursor.rowcount > 0

    def get_session_user(self, token: str) -> Optional[dict]:
        """Get the user a session token belongs to."""
        conn = self.connect()
        row = conn.execute(
            """SELECT u.*
               FROM sessions s
               JOIN users u ON u.id = s.user_id
               WHERE s.token = ?""",
            (token,)
        ).fetchone()
        return dict(row) if row else None

    def count_sessions(self) -> int:
        """Get number of live sessions."""
        conn = self.connect()
        return conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]

    # --- Registration Token Operations ---

    def get_registration_token(self, email: str) -> Optional[dict]:
        """Get the registration token row for an email."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM registration_tokens WHERE LOWER(email) = LOWER(?)",
            (email,)
        ).fetchone()
        return dict(row) if row else None

    def find_registration_token(self, token: str,
                                email: str = None) -> Optional[dict]:
        """
        Find a registration token row by its code.

        With an email the pair must match exactly. Without one, unused rows
        win over used ones and the newest expiry wins among equals.
        """
        conn = self.connect()
        if email:
            row = conn.execute(
                """SELECT * FROM registration_tokens
                   WHERE LOWER(email) = LOWER(?) AND token = ?""",
                (email, token)
            ).fetchone()
        else:
            row = conn.execute(
                """SELECT * FROM registration_tokens
                   WHERE token = ?
                   ORDER BY used ASC, expires_at DESC
                   LIMIT 1""",
                (token,)
            ).fetchone()
        return dict(row) if row else None

    def is_registration_token_pending(self, token: str) -> bool:
        """Check whether an unused registration token already has this code."""
        conn = self.connect()
        row = conn.execute(
            "SELECT 1 FROM registration_tokens WHERE token = ? AND used = 0",
            (token,)
        ).fetchone()
        return row is not None

    def save_registration_token(self, email: str, token: str, expires_at: str,
                                name: str = "", department: str = ""):
        """
        Create or replace the pending token for an email.

        A replacement resets the used flag, so a fresh code can always be
        requested before the account exists.
        """
        email = email.lower()
        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM registration_tokens WHERE LOWER(email) = ?",
                (email,)
            ).fetchone()
            if existing:
                conn.execute(
                    """UPDATE registration_tokens
                       SET token = ?, expires_at = ?, name = ?, department = ?,
                           used = 0, used_at = NULL, created_at = datetime('now')
                       WHERE id = ?""",
                    (token, expires_at, name, department, existing["id"])
                )
            else:
                conn.execute(
                    """INSERT INTO registration_tokens
                       (email, name, department, token, expires_at, used)
                       VALUES (?, ?, ?, ?, ?, 0)""",
                    (email, name, department, token, expires_at)
                )

    def mark_registration_token_used(self, email: str, token: str) -> bool:
        """
        Flip a token to used. Only an unused token is flipped.

        Returns:
            True if this call consumed the token
        """
        conn = self.connect()
        cursor = conn.execute(
            """UPDATE registration_tokens
               SET used = 1, used_at = datetime('now')
               WHERE LOWER(email) = LOWER(?) AND token = ? AND used = 0""",
            (email, token)
        )
        self._commit()
        return cursor.rowcount == 1

    # --- Statistics ---

    def get_admin_stats(self) -> dict:
        """Get identity statistics for the admin overview."""
        conn = self.connect()

        total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        admins = conn.execute(
            "SELECT COUNT(*) FROM users WHERE is_admin = 1"
        ).fetchone()[0]
        last_login = conn.execute(
            "SELECT MAX(last_login_at) FROM users"
        ).fetchone()[0]
        pending = conn.execute(
            """SELECT COUNT(*) FROM registration_tokens
               WHERE used = 0 AND expires_at >= datetime('now')"""
        ).fetchone()[0]

        return {
            "totalUsers": total_users,
            "admins": admins,
            "activeSessions": self.count_sessions(),
            "lastLogin": last_login,
            "pendingRegistrations": pending,
        }


def seed_users_from_config(db: Database, config: dict) -> list[str]:
    """Seed the configured default accounts, storing secrets per the active scheme."""
    from portal.auth.passwords import hash_password

    scheme = config.get("auth", {}).get("password_scheme", "plaintext")
    users = [
        {**user, "password": hash_password(user["password"], scheme)}
        for user in config.get("default_users") or DEFAULT_USERS
    ]
    return db.seed_default_users(users)
