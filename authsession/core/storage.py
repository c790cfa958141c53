"""Transient key/value storage that survives the login redirect.

Pending PKCE states and the current token set must outlive the full-page
navigation to the provider. ``MemoryStorage`` serves a single long-lived
process; ``FileStorage`` persists a JSON document on disk, optionally
encrypted with Fernet.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cryptography.fernet import Fernet, InvalidToken

from authsession.core.config import DEFAULT_CONFIG_DIR, DEFAULT_STORAGE_PATH

if TYPE_CHECKING:
    from authsession.core.config import StorageSettings

logger = logging.getLogger(__name__)

DEFAULT_KEY_PATH = DEFAULT_CONFIG_DIR / "storage.key"

# Environment variable names
ENV_STORAGE_KEY = "AUTHSESSION_STORAGE_KEY"
ENV_STORAGE_KEY_FILE = "AUTHSESSION_STORAGE_KEY_FILE"


class StorageError(Exception):
    """Base exception for storage errors."""


class KeyNotFoundError(StorageError):
    """Raised when the storage encryption key cannot be found."""


def get_encryption_key() -> bytes:
    """Get the storage encryption key.

    Priority:
    1. AUTHSESSION_STORAGE_KEY environment variable (direct key)
    2. AUTHSESSION_STORAGE_KEY_FILE environment variable (path to key file)
    3. Default key file at ~/.authsession/storage.key

    Returns:
        The Fernet key.

    Raises:
        KeyNotFoundError: If no key is found in any location.
    """
    key = os.environ.get(ENV_STORAGE_KEY)
    if key:
        return key.encode("ascii")

    key_file_path = os.environ.get(ENV_STORAGE_KEY_FILE)
    if key_file_path:
        key_path = Path(key_file_path)
        if key_path.exists():
            return key_path.read_text().strip().encode("ascii")
        raise KeyNotFoundError(f"Key file not found: {key_file_path}")

    if DEFAULT_KEY_PATH.exists():
        return DEFAULT_KEY_PATH.read_text().strip().encode("ascii")

    raise KeyNotFoundError(
        f"No storage key found. Set {ENV_STORAGE_KEY}, "
        f"set {ENV_STORAGE_KEY_FILE} to point to a key file, "
        f"or create key file at {DEFAULT_KEY_PATH}"
    )


def generate_encryption_key() -> bytes:
    """Generate a new Fernet key (AES-128-CBC with HMAC-SHA256)."""
    return Fernet.generate_key()


def save_encryption_key(key: bytes, key_path: Path | None = None) -> Path:
    """Save an encryption key to a file readable only by the owner.

    Args:
        key: The key to save.
        key_path: Path to save the key. Defaults to ~/.authsession/storage.key.

    Returns:
        The path where the key was saved.
    """
    if key_path is None:
        key_path = DEFAULT_KEY_PATH

    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(key.decode("ascii"))
    key_path.chmod(0o600)

    return key_path


def ensure_encryption_key() -> bytes:
    """Get the storage key, generating and saving one on first use."""
    try:
        return get_encryption_key()
    except KeyNotFoundError:
        if os.environ.get(ENV_STORAGE_KEY_FILE):
            raise
        key = generate_encryption_key()
        path = save_encryption_key(key)
        logger.info(f"Generated storage encryption key at {path}")
        return key


class MemoryStorage:
    """In-process storage. All operations are atomic under a lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, Any] = {}

    def _flush(self) -> None:
        """Persist the current data. No-op in memory."""

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def pop(self, key: str) -> Any | None:
        """Remove and return a value atomically."""
        with self._lock:
            if key not in self._data:
                return None
            value = self._data.pop(key)
            self._flush()
            return value

    def delete(self, key: str) -> None:
        self.pop(key)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._flush()


class FileStorage(MemoryStorage):
    """Storage persisted as a JSON document, optionally Fernet-encrypted.

    The file is rewritten atomically on every change. An unreadable file
    (wrong key, corrupt content) is discarded with a warning, which signs
    the user out rather than blocking startup.
    """

    def __init__(self, path: Path, key: bytes | None = None) -> None:
        super().__init__()
        self.path = path
        self._fernet = Fernet(key) if key else None
        self._data = self._load()

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        raw = self.path.read_bytes()
        try:
            if self._fernet is not None:
                raw = self._fernet.decrypt(raw)
            data = json.loads(raw)
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Discarding unreadable session storage {self.path}: {type(e).__name__}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Discarding session storage {self.path}: not a JSON object")
            return {}
        return data

    def _flush(self) -> None:
        payload = json.dumps(self._data, sort_keys=True).encode("utf-8")
        if self._fernet is not None:
            payload = self._fernet.encrypt(payload)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(payload)
        tmp_path.chmod(0o600)
        os.replace(tmp_path, self.path)


def create_storage(settings: StorageSettings) -> FileStorage:
    """Create the file storage described by the settings."""
    path = settings.path or DEFAULT_STORAGE_PATH
    key = ensure_encryption_key() if settings.encrypt else None
    return FileStorage(path, key=key)
