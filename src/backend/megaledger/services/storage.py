"""
State storage backends for the ledger and pending-receipt blobs.
Each blob is a JSON object saved whole on every mutation (write-through).
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Protocol

from megaledger.config import settings
from megaledger.exceptions import PersistenceError

logger = logging.getLogger(__name__)

LEDGER_BLOB = "ledger"
PENDING_BLOB = "pending"


class BlobStore(Protocol):
    """Key-value storage for whole JSON documents."""

    def load(self, key: str) -> Dict[str, Any]:
        ...

    def save(self, key: str, data: Dict[str, Any]) -> None:
        ...


class JsonFileBlobStore:
    """Stores each blob as a pretty-printed JSON file."""

    def __init__(self, paths: Dict[str, str], base_dir: str = None):
        """
        Args:
            paths: Blob key → file name (relative names resolve against base_dir)
            base_dir: Directory for relative file names (default: cwd)
        """
        base = Path(base_dir) if base_dir else Path.cwd()
        self.paths = {key: self._resolve(base, name) for key, name in paths.items()}

    @staticmethod
    def _resolve(base: Path, name: str) -> Path:
        path = Path(name)
        return path if path.is_absolute() else base / path

    def _path_for(self, key: str) -> Path:
        if key not in self.paths:
            raise PersistenceError(f"Unknown blob key: {key}")
        return self.paths[key]

    def load(self, key: str) -> Dict[str, Any]:
        """
        Read a blob; a missing file is an empty blob.

        Raises:
            PersistenceError: If the file exists but cannot be decoded
        """
        path = self._path_for(key)
        if not path.exists():
            return {}

        try:
            with path.open('r', encoding='utf-8') as handle:
                data = json.load(handle)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"Blob {key} is not a JSON object")
        return data

    def save(self, key: str, data: Dict[str, Any]) -> None:
        """
        Write a blob atomically (temp file + rename).

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = self._path_for(key)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to write {path}: {e}") from e


class SupabaseBlobStore:
    """
    Stores each blob as a row in a Supabase table.

    Expected schema:
        create table bot_state (
            key text primary key,
            data jsonb not null,
            updated_at timestamptz
        );
    """

    def __init__(self, client=None, table: str = None):
        if client is None:
            from megaledger.utils.supabase import get_supabase_client
            client = get_supabase_client()
        self.supabase = client
        self.table = table or settings.STATE_TABLE

    def load(self, key: str) -> Dict[str, Any]:
        try:
            response = self.supabase.table(self.table).select('data').eq(
                'key', key
            ).limit(1).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to load blob {key}: {e}") from e

        if not response.data:
            return {}
        return response.data[0].get('data') or {}

    def save(self, key: str, data: Dict[str, Any]) -> None:
        try:
            self.supabase.table(self.table).upsert({
                'key': key,
                'data': data,
                'updated_at': datetime.now(timezone.utc).isoformat(),
            }).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save blob {key}: {e}") from e


def build_blob_store(backend: str = None) -> BlobStore:
    """Create the blob store selected by STORAGE_BACKEND."""
    backend = (backend or settings.STORAGE_BACKEND).lower()

    if backend == 'supabase':
        logger.info("Using Supabase state storage", extra={"table": settings.STATE_TABLE})
        return SupabaseBlobStore()

    if backend == 'file':
        logger.info("Using JSON file state storage", extra={
            "ledger_file": settings.DATA_FILE,
            "pending_file": settings.PENDING_FILE,
        })
        return JsonFileBlobStore({
            LEDGER_BLOB: settings.DATA_FILE,
            PENDING_BLOB: settings.PENDING_FILE,
        })

    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
