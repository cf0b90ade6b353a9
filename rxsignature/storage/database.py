"""Database Module - SQLCipher Encrypted Reference Store

Stores the enrolled reference set in an encrypted SQLite database.

Tables:
- reference_signatures: one row per enrolled reference (flat, no foreign keys)

The encryption key comes from RXSIG_DB_KEY, or is generated on first use and
kept in the .db_key file next to the project (owner read/write only).
"""

from __future__ import annotations

import json
import os
import secrets
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from sqlcipher3 import dbapi2 as sqlite

from rxsignature.config import DB_PATH, DB_KEY_FILE, SIGNATURE_IMAGE_DIRNAME
from rxsignature.exceptions import DuplicateIdentifierError, StoreError
from rxsignature.models import ReferenceSignature
from rxsignature.models_serialization import reference_from_dict, reference_to_dict
from rxsignature.storage.base import ReferenceStore


def get_db_key(key_file: Path = DB_KEY_FILE) -> str:
    """Get or generate database encryption key."""
    env_key = os.environ.get("RXSIG_DB_KEY")
    if env_key:
        return env_key

    if key_file.exists():
        return key_file.read_text().strip()

    # Generate new key
    key = secrets.token_urlsafe(32)

    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_text(key)
    key_file.chmod(0o600)  # Read/write for owner only

    return key


# ============================================================================
# DATABASE CLASS
# ============================================================================

class DatabaseReferenceStore(ReferenceStore):
    """SQLCipher-backed reference store."""

    def __init__(self, db_path: Path = None, encryption_key: str = None, image_dir: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to database file
            encryption_key: Encryption key for SQLCipher
            image_dir: Where reference images go (default: <db dir>/signatures)
        """
        self.db_path = Path(db_path or DB_PATH)
        self.base_dir = self.db_path.parent
        self.image_dir = Path(image_dir) if image_dir else self.base_dir / SIGNATURE_IMAGE_DIRNAME
        self.encryption_key = encryption_key or get_db_key()
        self.conn = None
        self._lock = threading.Lock()

        self._connect()
        self._create_tables()

    def _connect(self):
        """Connect to the encrypted database."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite.connect(str(self.db_path), check_same_thread=False)
            escaped = self.encryption_key.replace("'", "''")
            self.conn.execute(f"PRAGMA key = '{escaped}'")
            # Fails here if the key does not match the file
            self.conn.execute("SELECT count(*) FROM sqlite_master")
        except sqlite.DatabaseError as exc:
            self.close()
            raise StoreError(f"Unable to open reference database {self.db_path}: {exc}") from exc

        # Row factory for dict-like access
        self.conn.row_factory = sqlite.Row

    def _create_tables(self):
        """Create database tables if they don't exist."""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS reference_signatures (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    email TEXT,
                    phone TEXT,
                    specialty TEXT,
                    hospital_name TEXT,
                    signature_path TEXT NOT NULL,
                    signature_hash TEXT NOT NULL,
                    is_verified BOOLEAN DEFAULT 1,
                    is_active BOOLEAN DEFAULT 1,
                    extra_json TEXT,
                    trained_at TEXT
                )
            """)
            self.conn.commit()

    # ========================================================================
    # ROW CONVERSION
    # ========================================================================

    def _to_row(self, reference: ReferenceSignature) -> tuple:
        data = reference_to_dict(reference, self.base_dir)
        extra = dict(reference.extra)
        return (
            reference.id,
            reference.display_name,
            reference.email,
            reference.phone,
            reference.specialty,
            reference.hospital_name,
            data["signaturePath"],
            reference.fingerprint,
            int(reference.is_verified),
            int(reference.is_active),
            json.dumps(extra),
            reference.enrolled_at,
        )

    def _from_row(self, row) -> ReferenceSignature:
        data = {
            "id": row["id"],
            "name": row["name"],
            "email": row["email"] or "",
            "phone": row["phone"] or "",
            "specialty": row["specialty"] or "",
            "hospitalName": row["hospital_name"] or "",
            "signaturePath": row["signature_path"],
            "signatureHash": row["signature_hash"],
            "isVerified": bool(row["is_verified"]),
            "isActive": bool(row["is_active"]),
            "trainedAt": row["trained_at"] or "",
        }
        if row["extra_json"]:
            for key, value in json.loads(row["extra_json"]).items():
                data.setdefault(key, value)
        return reference_from_dict(data, self.base_dir)

    # ========================================================================
    # REFERENCE SET
    # ========================================================================

    _INSERT = """INSERT INTO reference_signatures
                 (id, name, email, phone, specialty, hospital_name, signature_path,
                  signature_hash, is_verified, is_active, extra_json, trained_at)
                 VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""

    def load_all(self) -> List[ReferenceSignature]:
        with self._lock:
            try:
                rows = self.conn.execute(
                    "SELECT * FROM reference_signatures ORDER BY seq"
                ).fetchall()
            except sqlite.DatabaseError as exc:
                raise StoreError(f"Unable to read reference database {self.db_path}: {exc}") from exc
        try:
            return [self._from_row(row) for row in rows]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"Malformed record in reference database {self.db_path}: {exc}") from exc

    def get(self, reference_id: str) -> Optional[ReferenceSignature]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM reference_signatures WHERE id = ?", (reference_id,)
            ).fetchone()
        return self._from_row(row) if row else None

    def append(self, reference: ReferenceSignature) -> None:
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute(self._INSERT, self._to_row(reference))
            except sqlite.IntegrityError as exc:
                raise DuplicateIdentifierError(reference.id) from exc
            except sqlite.DatabaseError as exc:
                raise StoreError(f"Unable to write reference database {self.db_path}: {exc}") from exc

    def replace_all(self, references: Sequence[ReferenceSignature]) -> List[ReferenceSignature]:
        ids = [r.id for r in references]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise DuplicateIdentifierError(duplicates[0])

        try:
            previous = self.load_all()
        except StoreError:
            previous = []

        with self._lock:
            try:
                # One transaction: readers see the old set or the new one
                with self.conn:
                    self.conn.execute("DELETE FROM reference_signatures")
                    self.conn.executemany(self._INSERT, [self._to_row(r) for r in references])
            except sqlite.DatabaseError as exc:
                raise StoreError(f"Unable to write reference database {self.db_path}: {exc}") from exc
        return previous

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __repr__(self) -> str:
        return f"DatabaseReferenceStore({str(self.db_path)!r})"
