"""File-backed secret vault.

Stores string secrets ("pin", "ServerPublicKey", "Name", ...) in a JSON
file readable only by the owner. Any object with the same get/set
interface can replace it (see cloudbox.protocols.SecretVault).

Security features:
- File permissions (600 for the file, 700 for the directory)
- Atomic replace on write
"""

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Optional

from cloudbox.errors import StorageError

logger = logging.getLogger(__name__)

# Well-known keys
PIN = "pin"
SERVER_PUBLIC_KEY = "ServerPublicKey"
NAME = "Name"
PENDING_QR = "QR"
QR_KEY_MATERIAL = "QRKeyMaterial"


class JsonSecretVault:
    """Secret vault persisted as a JSON object."""

    def __init__(self, path: Path):
        """Initialize the vault.

        Args:
            path: JSON file. Created on first write.
        """
        self.path = Path(path)
        self._lock = Lock()
        self._values: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read vault {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Vault {self.path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self.path.parent, 0o700)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        data = json.dumps(self._values, indent=2)

        # Owner read/write only
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            os.write(fd, data.encode())
        finally:
            os.close(fd)
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the stored value for key, or default."""
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Optional[str]) -> None:
        """Store value under key. None deletes the key."""
        with self._lock:
            if value is None:
                if key not in self._values:
                    return
                del self._values[key]
            else:
                self._values[key] = value
            self._save()
        logger.debug(f"Vault key {'cleared' if value is None else 'set'}: {key}")

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._values
