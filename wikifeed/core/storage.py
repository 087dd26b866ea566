"""
Persistent key-value backends for WikiFeed.

Every backend is best-effort: I/O problems are logged and reads degrade to
``None`` so that callers can treat them as cache misses.
"""
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

STORAGE_VERSION = "1.0"


class BaseStore:
    """
    Interface shared by all persistent backends.
    """
    def get_cache(self, namespace: str, key: str) -> Optional[Any]:
        raise NotImplementedError

    def put_cache(self, namespace: str, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete_cache(self, namespace: str, key: str) -> None:
        raise NotImplementedError

    def keys(self, namespace: str) -> List[str]:
        raise NotImplementedError

    def clear_namespace(self, namespace: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullStore(BaseStore):
    """Backend for environments without durable storage. Remembers nothing."""

    def get_cache(self, namespace: str, key: str) -> Optional[Any]:
        return None

    def put_cache(self, namespace: str, key: str, value: Any) -> None:
        return None

    def delete_cache(self, namespace: str, key: str) -> None:
        return None

    def keys(self, namespace: str) -> List[str]:
        return []

    def clear_namespace(self, namespace: str) -> None:
        return None


class MemoryStore(BaseStore):
    """
    Process-local backend.

    Values are stored as JSON text so they follow the same serialization
    rules as the durable backend.
    """
    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}

    def get_cache(self, namespace: str, key: str) -> Optional[Any]:
        raw = self._data.get(namespace, {}).get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Corrupt entry {namespace}/{key}: {e}")
            return None

    def put_cache(self, namespace: str, key: str, value: Any) -> None:
        try:
            self._data.setdefault(namespace, {})[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache save failed for {namespace}/{key}: {e}")

    def delete_cache(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)

    def keys(self, namespace: str) -> List[str]:
        return list(self._data.get(namespace, {}).keys())

    def clear_namespace(self, namespace: str) -> None:
        self._data.pop(namespace, None)


class SqliteStore(BaseStore):
    """
    Durable backend on a single SQLite table keyed by (namespace, key).
    """
    def __init__(self, path: Union[str, Path] = "cache/wikifeed.db"):
        self.path = Path(path)
        self._init_cache_dir()
        self._init_db()

    def _init_cache_dir(self):
        """Initialize the cache directory."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self):
        """Initialize the SQLite database for caching."""
        with sqlite3.connect(self.path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (namespace, key)
                )
            """)

    def get_cache(self, namespace: str, key: str) -> Optional[Any]:
        """
        Get a stored value.

        Args:
            namespace: Logical cache name, e.g. 'articles-cache-v1'
            key: Entry key within the namespace

        Returns:
            The decoded value, or None on a miss or any storage error
        """
        try:
            with sqlite3.connect(self.path) as conn:
                cursor = conn.execute(
                    "SELECT value FROM cache_entries WHERE namespace = ? AND key = ?",
                    (namespace, key)
                )
                result = cursor.fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Cache fetch failed for {namespace}/{key}: {e}")
            return None

        if not result:
            logger.debug(f"Cache miss: {namespace}/{key}")
            return None
        try:
            return json.loads(result[0])
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupt entry {namespace}/{key}: {e}")
            return None

    def put_cache(self, namespace: str, key: str, value: Any) -> None:
        """
        Store a value, replacing any previous one.

        Args:
            namespace: Logical cache name
            key: Entry key within the namespace
            value: JSON-serializable value
        """
        try:
            payload = json.dumps(value)
            with sqlite3.connect(self.path) as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries (namespace, key, value, timestamp)
                    VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    (namespace, key, payload)
                )
            logger.debug(f"Cached: {namespace}/{key}")
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.warning(f"Cache save failed for {namespace}/{key}: {e}")

    def delete_cache(self, namespace: str, key: str) -> None:
        try:
            with sqlite3.connect(self.path) as conn:
                conn.execute(
                    "DELETE FROM cache_entries WHERE namespace = ? AND key = ?",
                    (namespace, key)
                )
        except sqlite3.Error as e:
            logger.warning(f"Cache delete failed for {namespace}/{key}: {e}")

    def keys(self, namespace: str) -> List[str]:
        try:
            with sqlite3.connect(self.path) as conn:
                cursor = conn.execute(
                    "SELECT key FROM cache_entries WHERE namespace = ? ORDER BY timestamp, key",
                    (namespace,)
                )
                return [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.warning(f"Listing {namespace} failed: {e}")
            return []

    def clear_namespace(self, namespace: str) -> None:
        try:
            with sqlite3.connect(self.path) as conn:
                conn.execute("DELETE FROM cache_entries WHERE namespace = ?", (namespace,))
        except sqlite3.Error as e:
            logger.warning(f"Clearing {namespace} failed: {e}")


BACKENDS = ('sqlite', 'memory', 'null')


def create_store(backend: str = 'sqlite', path: Union[str, Path] = "cache/wikifeed.db") -> BaseStore:
    """
    Build the persistent backend named in the ``storage`` config section.

    Args:
        backend: One of ``sqlite``, ``memory`` or ``null``
        path: Database file for the sqlite backend

    Returns:
        The store

    Raises:
        ValueError: If the backend is unknown
    """
    backend = (backend or 'sqlite').lower()
    if backend == 'sqlite':
        return SqliteStore(path)
    if backend == 'memory':
        return MemoryStore()
    if backend == 'null':
        return NullStore()
    raise ValueError(f"Unknown storage backend: {backend}")


def read_versioned(store: BaseStore, namespace: str, key: str, default: Any) -> Any:
    """
    Read a value written by ``write_versioned``.

    A version mismatch discards the stored value and returns the default.
    Values written without the envelope are returned unchanged.

    Args:
        store: Backend to read from
        namespace: Namespace of the value
        key: Key of the value
        default: Returned on a miss or a discarded value

    Returns:
        The stored value or ``default``
    """
    raw = store.get_cache(namespace, key)
    if raw is None:
        return default
    if isinstance(raw, dict) and '_metadata' in raw:
        metadata = raw.get('_metadata') or {}
        if metadata.get('version') != STORAGE_VERSION:
            logger.warning(f"Storage version mismatch for {namespace}/{key}, clearing data")
            store.delete_cache(namespace, key)
            return default
        return raw.get('data', default)
    return raw


def write_versioned(store: BaseStore, namespace: str, key: str, value: Any) -> None:
    """Write a value wrapped in the versioned envelope."""
    store.put_cache(namespace, key, {
        '_metadata': {
            'version': STORAGE_VERSION,
            'lastUpdated': int(time.time() * 1000),
        },
        'data': value,
    })
