import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from ..models import AuthorizationCode, AuthorizationRequest, AuthRequestStatus, Token, TokenType
from .interface import (
    CodeRedemption,
    Rotation,
    StorageAdapter,
    StorageTimeoutError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


def _ts(value: datetime) -> float:
    return value.timestamp()


class SQLiteStorage(StorageAdapter):
    """
    Transactional storage adapter on SQLite.

    Each transition runs in a ``BEGIN IMMEDIATE`` transaction so that
    compare-and-swap updates are serialized across every process sharing
    the database file. The indexed columns drive the checks; ``data`` holds
    the full record as JSON.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self._local = threading.local()
        self.initialize()

    def _get_connection(self):
        """Get thread-local database connection"""
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                check_same_thread=False,
                isolation_level=None  # Autocommit mode
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def _transaction(self):
        """Context manager for write transactions"""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            raise StorageTimeoutError(f"could not start transaction: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            conn.execute("ROLLBACK")
            raise StorageUnavailableError(str(e)) from e
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _query_one(self, sql: str, params: tuple):
        try:
            return self._get_connection().execute(sql, params).fetchone()
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(str(e)) from e

    def initialize(self):
        """Initialize database schema"""
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS auth_requests (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                expires_at REAL NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS codes (
                code TEXT PRIMARY KEY,
                request_id TEXT NOT NULL,
                expires_at REAL NOT NULL,
                used INTEGER NOT NULL DEFAULT 0,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tokens (
                value TEXT PRIMARY KEY,
                token_type TEXT NOT NULL,
                family_id TEXT NOT NULL,
                revoked INTEGER NOT NULL DEFAULT 0,
                expires_at REAL NOT NULL,
                data TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS revoked_families (
                family_id TEXT PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS assertions (
                key TEXT PRIMARY KEY,
                expires_at REAL NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tokens_family ON tokens(family_id);
        """)

    # Authorization requests

    def create_auth_request(self, request: AuthorizationRequest) -> AuthorizationRequest:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO auth_requests (id, status, expires_at, data) VALUES (?, ?, ?, ?)",
                (request.id, request.status.value, _ts(request.expires_at), request.model_dump_json())
            )
        return request

    def get_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        row = self._query_one("SELECT data FROM auth_requests WHERE id = ?", (request_id,))
        return AuthorizationRequest.model_validate_json(row["data"]) if row else None

    def complete_auth_request(self, request_id: str, subject: str, auth_time: datetime, now: datetime,
                              code: str, code_expires_at: datetime) -> Optional[AuthorizationRequest]:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data FROM auth_requests WHERE id = ? AND status = ? AND expires_at > ?",
                (request_id, AuthRequestStatus.PENDING.value, _ts(now))
            ).fetchone()
            if row is None:
                return None
            updated = AuthorizationRequest.model_validate_json(row["data"]).model_copy(update={
                "subject": subject,
                "auth_time": auth_time,
                "status": AuthRequestStatus.AUTHENTICATED,
            })
            conn.execute(
                "UPDATE auth_requests SET status = ?, data = ? WHERE id = ?",
                (updated.status.value, updated.model_dump_json(), request_id)
            )
            self._insert_code(conn, AuthorizationCode(
                code=code,
                authorization_request_id=request_id,
                client_id=updated.client_id,
                expires_at=code_expires_at,
            ))
        return updated

    def delete_auth_request(self, request_id: str) -> Optional[AuthorizationRequest]:
        with self._transaction() as conn:
            row = conn.execute("SELECT data FROM auth_requests WHERE id = ?", (request_id,)).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM auth_requests WHERE id = ?", (request_id,))
        return AuthorizationRequest.model_validate_json(row["data"])

    # Authorization codes

    def _insert_code(self, conn, code: AuthorizationCode) -> None:
        try:
            conn.execute(
                "INSERT INTO codes (code, request_id, expires_at, used, data) VALUES (?, ?, ?, 0, ?)",
                (code.code, code.authorization_request_id, _ts(code.expires_at), code.model_dump_json())
            )
        except sqlite3.IntegrityError as e:
            raise ValueError("authorization code already exists") from e

    def issue_code(self, code: AuthorizationCode) -> AuthorizationCode:
        with self._transaction() as conn:
            self._insert_code(conn, code)
        return code

    def get_code(self, code: str) -> Optional[AuthorizationCode]:
        row = self._query_one("SELECT data, used FROM codes WHERE code = ?", (code,))
        if row is None:
            return None
        return AuthorizationCode.model_validate_json(row["data"]).model_copy(update={"used": bool(row["used"])})

    def redeem_code(self, code: str, now: datetime) -> CodeRedemption:
        with self._transaction() as conn:
            code_row = conn.execute(
                "SELECT request_id, expires_at, used FROM codes WHERE code = ?", (code,)
            ).fetchone()
            if code_row is None:
                return CodeRedemption(None, False, "not_found")

            request_row = conn.execute(
                "SELECT data FROM auth_requests WHERE id = ?", (code_row["request_id"],)
            ).fetchone()
            request = AuthorizationRequest.model_validate_json(request_row["data"]) if request_row else None

            if code_row["used"]:
                return CodeRedemption(request, False, "used")
            if _ts(now) >= code_row["expires_at"]:
                return CodeRedemption(request, False, "expired")
            if request is None or request.status != AuthRequestStatus.AUTHENTICATED:
                return CodeRedemption(None, False, "not_found")

            swapped = conn.execute("UPDATE codes SET used = 1 WHERE code = ? AND used = 0", (code,))
            if swapped.rowcount != 1:
                return CodeRedemption(request, False, "used")

            consumed = request.model_copy(update={"status": AuthRequestStatus.CONSUMED})
            conn.execute(
                "UPDATE auth_requests SET status = ?, data = ? WHERE id = ?",
                (consumed.status.value, consumed.model_dump_json(), consumed.id)
            )
        return CodeRedemption(consumed, True)

    # Tokens

    def _insert_token(self, conn, token: Token) -> Token:
        family_revoked = conn.execute(
            "SELECT 1 FROM revoked_families WHERE family_id = ?", (token.family_id,)
        ).fetchone()
        if family_revoked:
            token = token.model_copy(update={"revoked": True})
        conn.execute(
            "INSERT OR REPLACE INTO tokens (value, token_type, family_id, revoked, expires_at, data) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (token.value, token.token_type.value, token.family_id, int(token.revoked),
             _ts(token.expires_at), token.model_dump_json())
        )
        return token

    def store_token(self, token: Token) -> Token:
        with self._transaction() as conn:
            return self._insert_token(conn, token)

    def get_token(self, value: str) -> Optional[Token]:
        row = self._query_one("SELECT data, revoked FROM tokens WHERE value = ?", (value,))
        if row is None:
            return None
        return Token.model_validate_json(row["data"]).model_copy(update={"revoked": bool(row["revoked"])})

    def rotate_refresh_token(self, old_value: str, new_token: Token, now: datetime) -> Rotation:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT data, revoked, expires_at FROM tokens WHERE value = ? AND token_type = ?",
                (old_value, TokenType.REFRESH.value)
            ).fetchone()
            if row is None:
                return Rotation(None, False, "not_found")
            old = Token.model_validate_json(row["data"]).model_copy(update={"revoked": bool(row["revoked"])})

            family_revoked = conn.execute(
                "SELECT 1 FROM revoked_families WHERE family_id = ?", (old.family_id,)
            ).fetchone()
            if old.revoked or family_revoked:
                return Rotation(old, False, "revoked")
            if _ts(now) >= row["expires_at"]:
                return Rotation(old, False, "expired")

            swapped = conn.execute(
                "UPDATE tokens SET revoked = 1 WHERE value = ? AND revoked = 0", (old_value,)
            )
            if swapped.rowcount != 1:
                return Rotation(old, False, "revoked")
            stored = self._insert_token(conn, new_token)
        return Rotation(stored, True)

    def revoke_token(self, value: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("UPDATE tokens SET revoked = 1 WHERE value = ?", (value,))
            return cursor.rowcount > 0

    def revoke_token_family(self, family_id: str) -> int:
        with self._transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO revoked_families (family_id) VALUES (?)", (family_id,))
            cursor = conn.execute(
                "UPDATE tokens SET revoked = 1 WHERE family_id = ? AND revoked = 0", (family_id,)
            )
            count = cursor.rowcount
        logger.warning(f"Revoked token family {family_id} ({count} tokens)")
        return count

    def is_family_revoked(self, family_id: str) -> bool:
        row = self._query_one("SELECT 1 FROM revoked_families WHERE family_id = ?", (family_id,))
        return row is not None

    def record_assertion_jti(self, client_id: str, jti: str, expires_at: datetime) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO assertions (key, expires_at) VALUES (?, ?)",
                (f"{client_id}:{jti}", _ts(expires_at))
            )
            return cursor.rowcount == 1

    def cleanup_expired(self, now: datetime) -> int:
        cutoff = _ts(now)
        with self._transaction() as conn:
            cleaned_count = 0
            cleaned_count += conn.execute("DELETE FROM codes WHERE expires_at <= ?", (cutoff,)).rowcount
            cleaned_count += conn.execute(
                "DELETE FROM auth_requests WHERE expires_at <= ? "
                "AND id NOT IN (SELECT request_id FROM codes)",
                (cutoff,)
            ).rowcount
            cleaned_count += conn.execute("DELETE FROM tokens WHERE expires_at <= ?", (cutoff,)).rowcount
            cleaned_count += conn.execute("DELETE FROM assertions WHERE expires_at <= ?", (cutoff,)).rowcount
        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} expired records")
        return cleaned_count

    def close(self):
        """Close database connection"""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
