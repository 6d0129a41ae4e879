"""Credential lifecycle: validate against the platform, keep the key in the vault."""
import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from dashvault.exceptions import InvalidInputError, InvalidStateError, NotFoundError
from dashvault.integrations.nerdgraph.client import NerdGraphClient
from dashvault.repositories import credential_repository
from dashvault.schemas.audit import AuditEventType
from dashvault.schemas.credential import (
    Credential,
    CredentialCreate,
    CredentialStatus,
    CredentialUpdate,
)
from dashvault.services.audit_service import record_event
from dashvault.storage.vault import CredentialVault
from dashvault.utils.helpers import new_id, utc_timestamp

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., NerdGraphClient]


def secret_name(org_id: str, credential_id: str) -> str:
    return f"dashvault/{org_id}/{credential_id}"


class CredentialService:
    def __init__(
        self,
        db: AsyncSession,
        vault: CredentialVault,
        client_factory: ClientFactory = NerdGraphClient,
    ):
        self.db = db
        self.vault = vault
        self.client_factory = client_factory

    async def _reachable_accounts(self, api_key: str) -> list[str]:
        async with self.client_factory(api_key) as client:
            validation = await client.validate_credential()
        if not validation["valid"]:
            raise InvalidInputError("Invalid New Relic API key")
        if not validation["accounts"]:
            raise InvalidInputError("No accounts accessible with this API key")
        return [account["id"] for account in validation["accounts"]]

    async def create(self, org_id: str, data: CredentialCreate, created_by: str) -> Credential:
        account_ids = await self._reachable_accounts(data.api_key)

        credential_id = new_id()
        now = utc_timestamp()
        credential = Credential(
            credential_id=credential_id,
            org_id=org_id,
            name=data.name,
            secret_id=secret_name(org_id, credential_id),
            account_ids=account_ids,
            status=CredentialStatus.ACTIVE,
            last_validated=now,
            created_at=now,
            created_by=created_by,
        )
        await self.vault.create(credential.secret_id, data.api_key)
        await credential_repository.create(self.db, credential)
        await record_event(
            self.db, org_id, AuditEventType.CREDENTIAL_CREATED,
            actor=created_by, resource_type="credential", resource_id=credential_id,
            details={"account_count": len(credential.account_ids)},
        )
        logger.info(
            "Credential %s created for org %s (%d accounts)",
            credential_id, org_id, len(credential.account_ids),
        )
        return credential

    async def get(self, org_id: str, credential_id: str) -> Credential:
        credential = await credential_repository.find_by_id(self.db, org_id, credential_id)
        if credential is None:
            raise NotFoundError("Credential not found")
        return credential

    async def list_by_org(self, org_id: str) -> list[Credential]:
        return await credential_repository.list_by_org(self.db, org_id)

    async def update(
        self, org_id: str, credential_id: str, data: CredentialUpdate, updated_by: str,
    ) -> Credential:
        credential = await self.get(org_id, credential_id)
        changes: dict = {}
        if data.name is not None:
            changes["name"] = data.name
        if data.api_key is not None:
            changes["account_ids"] = await self._reachable_accounts(data.api_key)
            changes["status"] = CredentialStatus.ACTIVE
            changes["last_validated"] = utc_timestamp()
        if not changes:
            raise InvalidInputError("Nothing to update")

        if data.api_key is not None:
            try:
                await self.vault.update(credential.secret_id, data.api_key)
            except NotFoundError:
                # the record outlived its secret; store the new key under the same id
                await self.vault.create(credential.secret_id, data.api_key)
        updated = await credential_repository.update(self.db, org_id, credential_id, **changes)
        await record_event(
            self.db, org_id, AuditEventType.CREDENTIAL_UPDATED,
            actor=updated_by, resource_type="credential", resource_id=credential_id,
            details={"fields": sorted(data.model_dump(exclude_none=True))},
        )
        logger.info("Credential %s updated for org %s: %s", credential_id, org_id, sorted(changes))
        return updated

    async def validate(self, org_id: str, credential_id: str) -> dict:
        """Re-check a stored key and refresh its status and account list."""
        credential = await self.get(org_id, credential_id)
        api_key = await self.vault.get(credential.secret_id)
        if api_key is None:
            logger.warning("Secret missing for credential %s in org %s", credential_id, org_id)
            await credential_repository.update(
                self.db, org_id, credential_id,
                status=CredentialStatus.INVALID, last_validated=utc_timestamp(),
            )
            return {"valid": False, "accounts": []}

        async with self.client_factory(api_key) as client:
            validation = await client.validate_credential()

        changes = {
            "status": CredentialStatus.ACTIVE if validation["valid"] else CredentialStatus.INVALID,
            "last_validated": utc_timestamp(),
        }
        if validation["valid"]:
            changes["account_ids"] = [account["id"] for account in validation["accounts"]]
        await credential_repository.update(self.db, org_id, credential_id, **changes)
        await record_event(
            self.db, org_id, AuditEventType.CREDENTIAL_VALIDATED,
            resource_type="credential", resource_id=credential_id,
            details={"valid": validation["valid"]},
        )
        logger.info("Credential %s validated for org %s: valid=%s", credential_id, org_id, validation["valid"])
        return validation

    async def delete(self, org_id: str, credential_id: str) -> None:
        credential = await self.get(org_id, credential_id)
        try:
            await self.vault.delete(credential.secret_id)
        except NotFoundError:
            logger.warning("Secret for credential %s already gone", credential_id)
        await credential_repository.delete(self.db, org_id, credential_id)
        await record_event(
            self.db, org_id, AuditEventType.CREDENTIAL_DELETED,
            resource_type="credential", resource_id=credential_id,
        )
        logger.info("Credential %s deleted from org %s", credential_id, org_id)

    async def get_api_client(self, org_id: str, credential_id: str) -> NerdGraphClient:
        """Client bound to the stored key. The caller owns (and must close) it."""
        credential = await credential_repository.find_by_id(self.db, org_id, credential_id)
        if credential is None:
            raise NotFoundError("Credential not found")
        if credential.status != CredentialStatus.ACTIVE:
            raise InvalidStateError("Credential is not active")
        api_key = await self.vault.get(credential.secret_id)
        if api_key is None:
            raise NotFoundError("Credential secret not found")
        return self.client_factory(api_key, credential.account_ids)

    async def record_backup_run(
        self, org_id: str, credential_id: str, dashboard_count: int, timestamp: str,
    ) -> Credential:
        return await credential_repository.update(
            self.db, org_id, credential_id,
            dashboard_count=dashboard_count, last_backup_run=timestamp,
        )
