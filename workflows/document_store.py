"""SQLite store for documents and reconciliation transactions.

Document metadata is stored as canonical JSON. Vendor name and amount are
also kept in their own columns (amount as two-place text) so duplicate
lookups are exact matches on indexed columns.
"""

import json
import os
import sqlite3
import threading
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .documents import (
    Document, DocumentStatus, ExtractedFields, SourceContext,
    Transaction, TransactionSource,
    format_timestamp, parse_timestamp, to_amount, to_date,
)
from .errors import ConcurrentModification, DocumentNotFound, DocumentPersistenceFailure


def _serialize(name: str, value: Any) -> Any:
    """Convert a Document field value to its column value."""
    if name in ('created_at', 'processed_at'):
        return format_timestamp(value) if value else None
    if name == 'status':
        return DocumentStatus(value).value
    if name == 'source_context':
        return SourceContext(value).value
    if name == 'extracted':
        return json.dumps(value.to_dict())
    if name == 'resolution':
        return json.dumps(value or {})
    if name == 'is_duplicate':
        return 1 if value else 0
    return value


# Document fields that update_by_id accepts
_UPDATABLE_FIELDS = (
    'file_ref', 'filename', 'status', 'category', 'extracted', 'confidence',
    'is_duplicate', 'duplicate_of_id', 'source_context', 'processed_at',
    'resolution', 'last_error',
)


class DocumentStore:
    """SQLite-backed document and transaction store.

    Documents are never deleted; rejection is a status.
    """

    def __init__(self, db_path: str) -> None:
        # Ensure directory exists
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

        self.db_path = db_path
        # Used from worker threads (asyncio.to_thread), one statement at a time
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Create tables and indexes if they don't exist."""
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                file_ref TEXT,
                status TEXT NOT NULL,
                category TEXT,
                metadata TEXT,
                vendor_name TEXT,
                amount TEXT,
                confidence REAL DEFAULT 0,
                is_duplicate INTEGER DEFAULT 0,
                duplicate_of_id TEXT,
                created_at TEXT NOT NULL,
                processed_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                realm_id TEXT NOT NULL,
                source TEXT NOT NULL,
                external_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                date TEXT NOT NULL,
                counterparty TEXT,
                is_reconciled INTEGER DEFAULT 0,
                UNIQUE (realm_id, source, external_id)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status, created_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_vendor_amount
            ON documents(vendor_name, amount, created_at)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_transactions_realm ON transactions(realm_id, source)
        """)
        self.conn.commit()

        # Migration: add columns introduced after the first schema
        self._migrate_add_columns()
        self._migrate_transaction_key()

    def _migrate_add_columns(self) -> None:
        """Add new columns to existing databases if they don't exist."""
        cursor = self.conn.cursor()

        # Get existing columns
        cursor.execute("PRAGMA table_info(documents)")
        existing_columns = {row[1] for row in cursor.fetchall()}

        # Add missing columns
        migrations = [
            ("filename", "TEXT"),
            ("source_context", "TEXT DEFAULT 'web'"),
            ("resolution", "TEXT"),
            ("last_error", "TEXT"),
        ]

        for col_name, col_type in migrations:
            if col_name not in existing_columns:
                cursor.execute(f"ALTER TABLE documents ADD COLUMN {col_name} {col_type}")

        self.conn.commit()

    def _migrate_transaction_key(self) -> None:
        """Rebuild a transactions table keyed on (source, external_id) only.

        Bill IDs are only unique within one company, so the key includes the realm.
        """
        row = self.conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = 'transactions'"
        ).fetchone()
        if row is None or "UNIQUE (realm_id, source, external_id)" in row[0]:
            return

        cursor = self.conn.cursor()
        cursor.execute("ALTER TABLE transactions RENAME TO transactions_old")
        cursor.execute("""
            CREATE TABLE transactions (
                id TEXT PRIMARY KEY,
                realm_id TEXT NOT NULL,
                source TEXT NOT NULL,
                external_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                date TEXT NOT NULL,
                counterparty TEXT,
                is_reconciled INTEGER DEFAULT 0,
                UNIQUE (realm_id, source, external_id)
            )
        """)
        cursor.execute("""
            INSERT INTO transactions
            (id, realm_id, source, external_id, amount, date, counterparty, is_reconciled)
            SELECT id, realm_id, source, external_id, amount, date, counterparty, is_reconciled
            FROM transactions_old
        """)
        cursor.execute("DROP TABLE transactions_old")
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_transactions_realm ON transactions(realm_id, source)
        """)
        self.conn.commit()

    def _execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Run a write statement. Returns the number of rows changed."""
        with self._lock:
            try:
                cursor = self.conn.execute(sql, tuple(params))
                self.conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DocumentPersistenceFailure(f"Document store error: {e}") from e

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise DocumentPersistenceFailure(f"Document store error: {e}") from e

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        metadata = json.loads(row['metadata']) if row['metadata'] else {}
        return Document(
            id=row['id'],
            file_ref=row['file_ref'] or "",
            filename=row['filename'] or "",
            status=DocumentStatus(row['status']),
            category=row['category'] or "",
            extracted=ExtractedFields.from_dict(metadata),
            confidence=row['confidence'] or 0.0,
            is_duplicate=bool(row['is_duplicate']),
            duplicate_of_id=row['duplicate_of_id'],
            source_context=SourceContext.parse(row['source_context'] or 'web'),
            created_at=parse_timestamp(row['created_at']),
            processed_at=parse_timestamp(row['processed_at']),
            resolution=json.loads(row['resolution']) if row['resolution'] else {},
            last_error=row['last_error'],
        )

    # =========================================================================
    # Documents
    # =========================================================================

    def insert(self, doc: Document) -> Document:
        """Insert a new document, assigning an ID if it has none."""
        if not doc.id:
            doc = doc.replace(id=uuid.uuid4().hex)
        self._execute("""
            INSERT INTO documents
            (id, file_ref, filename, status, category, metadata, vendor_name, amount,
             confidence, is_duplicate, duplicate_of_id, source_context, created_at,
             processed_at, resolution, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            doc.id,
            doc.file_ref,
            doc.filename,
            doc.status.value,
            doc.category,
            _serialize('extracted', doc.extracted),
            doc.extracted.vendor_name,
            str(doc.extracted.amount),
            doc.confidence,
            _serialize('is_duplicate', doc.is_duplicate),
            doc.duplicate_of_id,
            doc.source_context.value,
            _serialize('created_at', doc.created_at),
            _serialize('processed_at', doc.processed_at),
            _serialize('resolution', doc.resolution),
            doc.last_error,
        ))
        return doc

    def get_by_id(self, document_id: str) -> Document:
        """Look up a document.

        Raises:
            DocumentNotFound: If no document has this ID
        """
        rows = self._query("SELECT * FROM documents WHERE id = ?", (document_id,))
        if not rows:
            raise DocumentNotFound(f"Document not found: {document_id}")
        return self._row_to_document(rows[0])

    def update_by_id(self, document_id: str, patch: Dict[str, Any],
                     expected_status: Optional[DocumentStatus] = None) -> Document:
        """Apply a partial update to a document.

        Args:
            document_id: Document to update
            patch: Document field names mapped to new values
            expected_status: If given, only update while the document still
                has this status

        Returns:
            The updated document

        Raises:
            DocumentNotFound: If no document has this ID
            ConcurrentModification: If the status no longer matches expected_status
            DocumentPersistenceFailure: If the write fails
        """
        unknown = set(patch) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not patch:
            return self.get_by_id(document_id)

        assignments = []
        params: List[Any] = []
        for name, value in patch.items():
            column = 'metadata' if name == 'extracted' else name
            assignments.append(f"{column} = ?")
            params.append(_serialize(name, value))
            if name == 'extracted':
                assignments.append("vendor_name = ?")
                params.append(value.vendor_name)
                assignments.append("amount = ?")
                params.append(str(value.amount))

        sql = f"UPDATE documents SET {', '.join(assignments)} WHERE id = ?"
        params.append(document_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(DocumentStatus(expected_status).value)

        if self._execute(sql, params) == 0:
            current = self.get_by_id(document_id)
            raise ConcurrentModification(
                f"Document {document_id} is {current.status.value}, "
                f"expected {DocumentStatus(expected_status).value}"
            )
        return self.get_by_id(document_id)

    def query_by_status(self, status: DocumentStatus) -> List[Document]:
        """Documents with the given status, newest first."""
        rows = self._query(
            "SELECT * FROM documents WHERE status = ? ORDER BY created_at DESC",
            (DocumentStatus(status).value,),
        )
        return [self._row_to_document(row) for row in rows]

    def query_by_vendor_and_amount_since(self, vendor_name: str, amount: Decimal,
                                         since: datetime,
                                         exclude_id: Optional[str] = None) -> List[Document]:
        """Documents with exactly this vendor and amount created at or after since."""
        sql = """
            SELECT * FROM documents
            WHERE vendor_name = ? AND amount = ? AND created_at >= ?
        """
        params: List[Any] = [vendor_name, str(to_amount(amount)), format_timestamp(since)]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY created_at DESC"
        rows = self._query(sql, params)
        return [self._row_to_document(row) for row in rows]

    # =========================================================================
    # Transactions
    # =========================================================================

    def upsert_transactions(self, transactions: Iterable[Transaction]) -> int:
        """Insert or update transactions keyed by (realm_id, source, external_id).

        Returns:
            Number of transactions written
        """
        count = 0
        with self._lock:
            try:
                for txn in transactions:
                    self.conn.execute("""
                        INSERT INTO transactions
                        (id, realm_id, source, external_id, amount, date, counterparty, is_reconciled)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT (realm_id, source, external_id) DO UPDATE SET
                            amount = excluded.amount,
                            date = excluded.date,
                            counterparty = excluded.counterparty,
                            is_reconciled = excluded.is_reconciled
                    """, (
                        txn.id or uuid.uuid4().hex,
                        txn.realm_id,
                        TransactionSource(txn.source).value,
                        txn.external_id,
                        str(to_amount(txn.amount)),
                        txn.date.isoformat(),
                        txn.counterparty,
                        1 if txn.is_reconciled else 0,
                    ))
                    count += 1
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DocumentPersistenceFailure(f"Transaction store error: {e}") from e
        return count

    def list_transactions(self, realm_id: str, source: TransactionSource) -> List[Transaction]:
        rows = self._query(
            "SELECT * FROM transactions WHERE realm_id = ? AND source = ? ORDER BY date, external_id",
            (realm_id, TransactionSource(source).value),
        )
        return [
            Transaction(
                id=row['id'],
                realm_id=row['realm_id'],
                source=TransactionSource(row['source']),
                external_id=row['external_id'],
                amount=Decimal(row['amount']),
                date=to_date(row['date']),
                counterparty=row['counterparty'] or "",
                is_reconciled=bool(row['is_reconciled']),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
