"""Credential vault: secret strings encrypted at rest in ``vault_secrets``."""
import logging

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.config import settings
from dashvault.exceptions import ConflictError, NotFoundError, StorageUnavailableError
from dashvault.models.vault_secret import VaultSecret
from dashvault.utils.encryption import SecretEncryptor

logger = logging.getLogger(__name__)


class CredentialVault:
    def __init__(self, db: AsyncSession, encryptor: SecretEncryptor | None = None):
        self.db = db
        self.encryptor = encryptor or SecretEncryptor(settings.ENCRYPTION_KEY)

    async def get(self, secret_id: str) -> str | None:
        record = await self._load(secret_id)
        if record is None:
            return None
        return self.encryptor.decrypt(record.ciphertext, secret_id)

    async def create(self, secret_id: str, value: str) -> None:
        if await self._load(secret_id) is not None:
            raise ConflictError(f"Secret {secret_id} already exists")
        self.db.add(VaultSecret(
            secret_id=secret_id,
            ciphertext=self.encryptor.encrypt(value, secret_id),
        ))
        await self._flush()

    async def update(self, secret_id: str, value: str) -> None:
        record = await self._load(secret_id)
        if record is None:
            raise NotFoundError(f"Secret {secret_id} not found")
        record.ciphertext = self.encryptor.encrypt(value, secret_id)
        await self._flush()

    async def delete(self, secret_id: str) -> None:
        record = await self._load(secret_id)
        if record is None:
            raise NotFoundError(f"Secret {secret_id} not found")
        await self.db.delete(record)
        await self._flush()

    async def _load(self, secret_id: str) -> VaultSecret | None:
        try:
            return await self.db.get(VaultSecret, secret_id)
        except (OperationalError, InterfaceError) as exc:
            logger.error("Vault read failed: %s", exc)
            raise StorageUnavailableError("Credential vault unavailable") from exc

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except (OperationalError, InterfaceError) as exc:
            logger.error("Vault write failed: %s", exc)
            raise StorageUnavailableError("Credential vault unavailable") from exc
