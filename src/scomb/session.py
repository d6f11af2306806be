"""Secret storage for the portal session token.

The login flow hands the session token to a SecretStore, and the repository
reads it back before every fetch. FileSecretStore persists secrets as a JSON
file in the state directory so a session survives process restarts and
repeated logins are avoided.
"""

import json
from pathlib import Path
from typing import Protocol

from src.scomb.errors import StorageError
from src.scomb.logging import get_logger

logger = get_logger(__name__)

SESSION_KEY = "session_id"
USERNAME_KEY = "username"


class SecretStore(Protocol):
    """Read/write/clear of opaque strings keyed by name."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class FileSecretStore:
    """Secret store backed by a JSON file with owner-only permissions."""

    def __init__(self, state_dir: str = "data/state") -> None:
        """Initialize FileSecretStore.

        Args:
            state_dir: Directory to store the secrets file in.
        """
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / "secrets.json"

        self.state_dir.mkdir(parents=True, exist_ok=True)

        logger.debug("secret_store_initialized", state_file=str(self.state_file))

    def _load(self) -> dict[str, str]:
        if not self.state_file.exists():
            return {}
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {self.state_file}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected content in {self.state_file}")
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: dict[str, str]) -> None:
        try:
            self.state_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            self.state_file.chmod(0o600)
        except OSError as e:
            raise StorageError(f"Cannot write {self.state_file}: {e}") from e

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)
        logger.info("secret_saved", key=key)

    def clear(self, key: str) -> None:
        """Remove a secret. Clearing a missing key is a no-op."""
        data = self._load()
        if key not in data:
            logger.debug("secret_clear_skipped", key=key, reason="not_found")
            return
        del data[key]
        self._save(data)
        logger.info("secret_cleared", key=key)
