"""
Credential provider for the background session.

Stores the runtime's OAuth token encrypted in the credentials table and
hands out the decrypted value, or None when nothing usable is stored.
"""
import logging
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import CredentialDecryptionError
from ..db.models import Credential, utcnow
from .encryption_service import EncryptionService

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIAL_ID = "default"
OAUTH_TOKEN_TYPE = "claude_code_oauth"


class CredentialProvider(Protocol):
    async def get_oauth_token(self) -> Optional[str]:
        ...


class CredentialService:
    """Reads and writes the runtime OAuth token."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: EncryptionService,
    ) -> None:
        self._session_factory = session_factory
        self._encryption = encryption

    async def get_oauth_token(self) -> Optional[str]:
        """
        Return the decrypted OAuth token.

        Returns None if no token is stored or it cannot be decrypted; the
        failure is logged, never raised.
        """
        try:
            async with self._session_factory() as db:
                credential = await db.get(Credential, DEFAULT_CREDENTIAL_ID)
                if credential is None or not credential.encrypted_value:
                    return None
                token = self._encryption.decrypt(credential.encrypted_value)
                credential.last_used_at = utcnow()
                await db.commit()
                return token
        except CredentialDecryptionError as e:
            logger.warning(f"{e}; store the token again")
            return None
        except Exception as e:
            logger.error(f"Error getting runtime OAuth token: {type(e).__name__}: {e}")
            return None

    async def store_oauth_token(self, token: str) -> None:
        """Encrypt and store the token, replacing any previous one."""
        encrypted = self._encryption.encrypt(token)
        async with self._session_factory() as db:
            credential = await db.get(Credential, DEFAULT_CREDENTIAL_ID)
            if credential is None:
                db.add(Credential(
                    id=DEFAULT_CREDENTIAL_ID,
                    token_type=OAUTH_TOKEN_TYPE,
                    encrypted_value=encrypted,
                ))
            else:
                credential.encrypted_value = encrypted
            await db.commit()
        logger.info("Stored runtime OAuth token")

    async def clear_oauth_token(self) -> bool:
        """Delete the stored token. Returns False if there was none."""
        async with self._session_factory() as db:
            credential = await db.get(Credential, DEFAULT_CREDENTIAL_ID)
            if credential is None:
                return False
            await db.delete(credential)
            await db.commit()
        logger.info("Cleared runtime OAuth token")
        return True
