"""
Fernet encryption for the stored runtime OAuth token.

The key lives in config/secrets.yaml (mode 600) and is generated on first
use. Rotating or losing that file makes previously stored tokens
undecryptable; callers see CredentialDecryptionError and must store the
token again.
"""
import logging
from pathlib import Path
from typing import Optional

import yaml
from cryptography.fernet import Fernet, InvalidToken

from ..config import CONFIG_DIR
from ..core.exceptions import CredentialDecryptionError

logger = logging.getLogger(__name__)
SECRETS_FILE: Path = CONFIG_DIR / "secrets.yaml"
KEY_FIELD = "fernet_key"


class EncryptionService:
    """Encrypts credential values with the key kept in a secrets file."""

    def __init__(self, secrets_file: Optional[Path] = None) -> None:
        self._secrets_file = secrets_file or SECRETS_FILE
        self._fernet: Optional[Fernet] = None

    @property
    def secrets_file(self) -> Path:
        return self._secrets_file

    def _load_secrets(self) -> dict:
        if not self._secrets_file.exists():
            return {}
        with self._secrets_file.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _save_secrets(self, secrets_data: dict) -> None:
        self._secrets_file.parent.mkdir(parents=True, exist_ok=True)
        with self._secrets_file.open("w", encoding="utf-8") as f:
            yaml.dump(secrets_data, f, default_flow_style=False)
        self._secrets_file.chmod(0o600)

    def _get_fernet(self) -> Fernet:
        if self._fernet:
            return self._fernet

        # Other keys in the file are preserved when the Fernet key is added
        secrets_data = self._load_secrets()
        key = secrets_data.get(KEY_FIELD)
        if not key:
            key = Fernet.generate_key().decode("utf-8")
            secrets_data[KEY_FIELD] = key
            self._save_secrets(secrets_data)
            logger.info(f"Generated credential encryption key in {self._secrets_file}")

        self._fernet = Fernet(key.encode())
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        return self._get_fernet().encrypt(plaintext.encode()).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            CredentialDecryptionError: If the key changed or the data is corrupt.
        """
        try:
            return self._get_fernet().decrypt(ciphertext.encode()).decode("utf-8")
        except InvalidToken as e:
            raise CredentialDecryptionError(
                f"Stored credential cannot be decrypted with the key in {self._secrets_file}"
            ) from e
