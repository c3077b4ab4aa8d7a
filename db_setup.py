import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from db_models import Contact, ContactDraft, LinkPrecedence
from exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

DB_NAME = os.environ.get("CONTACTS_DB", "contacts.db")
DB_TIMEOUT = float(os.environ.get("CONTACTS_DB_TIMEOUT", "5"))

# columns update() may touch; everything else is immutable once inserted
UPDATABLE_FIELDS = ("linkedId", "linkPrecedence")

def init_db(db_name: Optional[str] = None):
    conn = get_db_connection(db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            updatedAt DATETIME DEFAULT CURRENT_TIMESTAMP,
            deletedAt DATETIME,
            FOREIGN KEY (linkedId) REFERENCES Contact (id)
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_contact_linked ON Contact (linkedId)")

    conn.close()
    logger.info(f"Contact table ready in {db_name or DB_NAME}")

def get_db_connection(db_name: Optional[str] = None):
    # isolation_level=None: transactions are opened explicitly by ContactRepository
    conn = sqlite3.connect(
        db_name or DB_NAME,
        timeout=DB_TIMEOUT,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


class ContactRepository:
    """Persistence interface for contacts, backed by one SQLite connection.

    Every read skips soft-deleted rows and returns contacts in creation
    order, ``(createdAt, id)``. Any ``sqlite3.Error`` is raised again as
    ``PersistenceFailure``.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], datetime] = datetime.now):
        self.conn = conn
        self.clock = clock

    def _execute(self, query: str, params: Iterable = ()):
        try:
            return self.conn.execute(query, tuple(params))
        except sqlite3.Error as exc:
            logger.error(f"Contact query failed: {exc}")
            raise PersistenceFailure(str(exc)) from exc

    def _select(self, query: str, params: Iterable = ()) -> List[Contact]:
        rows = self._execute(query, params).fetchall()
        return [Contact(**dict(row)) for row in rows]

    @contextmanager
    def transaction(self):
        """Run the enclosed calls in one write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so concurrent
        requests touching the same clusters run one after the other.
        """
        self._execute("BEGIN IMMEDIATE")
        try:
            yield self
            self._execute("COMMIT")
        except Exception:
            if self.conn.in_transaction:
                try:
                    self.conn.execute("ROLLBACK")
                except sqlite3.Error as exc:
                    logger.error(f"Rollback failed: {exc}")
            raise

    def find_by_email_or_phone(self, email: Optional[str] = None, phone: Optional[str] = None) -> List[Contact]:
        if email is None and phone is None:
            return []
        return self._select("""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND (email = ? OR phoneNumber = ?)
            ORDER BY createdAt ASC, id ASC
        """, (email, phone))

    def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        ids = sorted(set(ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        return self._select(f"""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND id IN ({placeholders})
            ORDER BY createdAt ASC, id ASC
        """, ids)

    def find_by_primary_id(self, primary_id: int) -> List[Contact]:
        return self._select("""
            SELECT * FROM Contact
            WHERE deletedAt IS NULL
            AND (id = ? OR linkedId = ?)
            ORDER BY createdAt ASC, id ASC
        """, (primary_id, primary_id))

    def insert(self, draft: ContactDraft) -> Contact:
        now = self.clock().isoformat(timespec="microseconds")
        cursor = self._execute("""
            INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (draft.phoneNumber, draft.email, draft.linkedId, draft.linkPrecedence.value, now, now))
        return Contact(
            id=cursor.lastrowid,
            email=draft.email,
            phoneNumber=draft.phoneNumber,
            linkedId=draft.linkedId,
            linkPrecedence=draft.linkPrecedence,
            createdAt=now,
            updatedAt=now,
        )

    def update(self, contact_id: int, **fields) -> None:
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update contact fields: {sorted(unknown)}")
        if not fields:
            return

        values = []
        for name in UPDATABLE_FIELDS:
            if name in fields:
                value = fields[name]
                values.append(value.value if isinstance(value, LinkPrecedence) else value)
        assignments = ", ".join(f"{name} = ?" for name in UPDATABLE_FIELDS if name in fields)

        self._execute(f"""
            UPDATE Contact
            SET {assignments}, updatedAt = ?
            WHERE id = ? AND deletedAt IS NULL
        """, values + [self.clock().isoformat(timespec="microseconds"), contact_id])
