"""Backup tasks - BACKUPS queue.

Queued single/bulk backups and the nightly sweep over every active credential.
Each task runs its coroutine on a fresh event loop with its own session.
"""
import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dashvault.database import async_session_factory, engine
from dashvault.exceptions import AppError, StorageUnavailableError
from dashvault.integrations.nerdgraph.client import NerdGraphClient
from dashvault.repositories import credential_repository
from dashvault.schemas.credential import CredentialStatus
from dashvault.services.backup_service import BackupService
from dashvault.services.credential_service import ClientFactory, CredentialService
from dashvault.storage.blob_store import BlobStore, create_blob_store
from dashvault.storage.vault import CredentialVault
from dashvault.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _backup_service(
    db: AsyncSession, blob_store: BlobStore | None, client_factory: ClientFactory,
) -> BackupService:
    credentials = CredentialService(db, CredentialVault(db), client_factory)
    return BackupService(db, blob_store or create_blob_store(), credentials)


def _run(coro) -> Any:
    async def _with_cleanup():
        try:
            return await coro
        finally:
            # pooled connections are bound to this loop
            await engine.dispose()

    return asyncio.run(_with_cleanup())


# ── Task bodies ──

async def run_backup_single(
    org_id: str,
    credential_id: str,
    dashboard_guid: str,
    *,
    session_factory: async_sessionmaker = async_session_factory,
    blob_store: BlobStore | None = None,
    client_factory: ClientFactory = NerdGraphClient,
) -> dict[str, Any]:
    async with session_factory() as db:
        result = await _backup_service(db, blob_store, client_factory).backup_dashboard(
            org_id, credential_id, dashboard_guid,
        )
        await db.commit()
    return result.model_dump()


async def run_backup_all(
    org_id: str,
    credential_id: str,
    account_id: str | None = None,
    *,
    session_factory: async_sessionmaker = async_session_factory,
    blob_store: BlobStore | None = None,
    client_factory: ClientFactory = NerdGraphClient,
) -> dict[str, Any]:
    async with session_factory() as db:
        outcome = await _backup_service(db, blob_store, client_factory).backup_all_dashboards(
            org_id, credential_id, account_id,
        )
        await db.commit()
    return outcome.model_dump()


async def collect_active_credentials(
    *, session_factory: async_sessionmaker = async_session_factory,
) -> list[tuple[str, str]]:
    async with session_factory() as db:
        credentials = await credential_repository.list_all(db)
    return [
        (c.org_id, c.credential_id)
        for c in credentials
        if c.status == CredentialStatus.ACTIVE
    ]


# ── Celery tasks ──

@celery_app.task(bind=True, name="dashvault.tasks.backup_tasks.backup_single", max_retries=3, default_retry_delay=60)
def backup_single(self, org_id: str, credential_id: str, dashboard_guid: str):
    try:
        return _run(run_backup_single(org_id, credential_id, dashboard_guid))
    except AppError as exc:
        if exc.retryable:
            logger.warning("Backup of %s (org %s) will be retried: %s", dashboard_guid, org_id, exc.message)
            raise self.retry(exc=exc)
        logger.error("Backup of %s (org %s) failed: %s", dashboard_guid, org_id, exc.message)
        return {"status": "failed", **exc.to_dict()}


@celery_app.task(bind=True, name="dashvault.tasks.backup_tasks.backup_all", max_retries=3, default_retry_delay=300)
def backup_all(self, org_id: str, credential_id: str, account_id: str | None = None):
    try:
        outcome = _run(run_backup_all(org_id, credential_id, account_id))
    except StorageUnavailableError as exc:
        logger.warning("Bulk backup for org %s will be retried: %s", org_id, exc.message)
        raise self.retry(exc=exc)
    except AppError as exc:
        logger.error("Bulk backup for org %s failed: %s", org_id, exc.message)
        return {"status": "failed", **exc.to_dict()}
    logger.info(
        "Bulk backup job for org %s: %d succeeded, %d failed",
        org_id, len(outcome["results"]), len(outcome["errors"]),
    )
    return outcome


@celery_app.task(name="dashvault.tasks.backup_tasks.scheduled_backup_all")
def scheduled_backup_all():
    """Nightly: queue a bulk backup for every active credential of every org."""
    targets = _run(collect_active_credentials())
    for org_id, credential_id in targets:
        backup_all.delay(org_id, credential_id)
    logger.info("Dispatched %d scheduled bulk backups", len(targets))
    return len(targets)
