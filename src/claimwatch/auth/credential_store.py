# Credential Store: encrypted refresh-token persistence at ~/.claimwatch/.
# Created: 2026-10-18

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from claimwatch.config import get_config_dir

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "secure_tokens.enc"
KEY_FILE_NAME = "secure_tokens.key"


def _restrict(path: Path) -> None:
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


class CredentialStore:
    """Stores exactly one secret (the refresh token), Fernet-encrypted.

    The blob lives at ``{directory}/secure_tokens.enc`` and the key at
    ``{directory}/secure_tokens.key``; both are chmod 0600. A missing blob
    means "not logged in". A blob that cannot be decrypted is deleted and
    treated as missing.
    """

    def __init__(self, directory: Path | None = None):
        self._directory = directory

    @property
    def directory(self) -> Path:
        if self._directory is None:
            self._directory = get_config_dir()
        self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    @property
    def path(self) -> Path:
        return self.directory / TOKEN_FILE_NAME

    @property
    def key_path(self) -> Path:
        return self.directory / KEY_FILE_NAME

    def exists(self) -> bool:
        return self.path.exists()

    def _fernet(self, create: bool) -> Fernet | None:
        key_path = self.key_path
        if not key_path.exists():
            if not create:
                return None
            key_path.write_bytes(Fernet.generate_key())
            _restrict(key_path)
        return Fernet(key_path.read_bytes().strip())

    def save(self, refresh_token: str) -> None:
        """Encrypt and persist *refresh_token*, replacing any previous one."""
        fernet = self._fernet(create=True)
        self.path.write_bytes(fernet.encrypt(refresh_token.encode()))
        _restrict(self.path)
        logger.info("Refresh token encrypted and saved to disk")

    def load(self) -> str | None:
        """Return the decrypted refresh token, or None if absent or corrupt."""
        if not self.path.exists():
            logger.debug("No saved refresh token found")
            return None

        try:
            fernet = self._fernet(create=False)
            if fernet is None:
                raise InvalidToken()
            token = fernet.decrypt(self.path.read_bytes()).decode()
        except (InvalidToken, ValueError, OSError) as e:
            logger.warning("Stored refresh token is unreadable, deleting it: %s", type(e).__name__)
            self.clear()
            return None

        if not token:
            self.clear()
            return None
        return token

    def clear(self) -> bool:
        """Delete the persisted token. Returns True if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            logger.info("Deleted stored refresh token")
            return True
        return False
