"""Explicit construction of the service graph.

``build_services`` is called once at process start (FastAPI lifespan) and
the resulting bundle is stored on ``app.state``.  Configuration flows in
through ``Settings``; nothing below reads the environment on its own.
Any collaborator can be supplied by the caller, which is how tests swap in
fakes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from certvault.core.config import Settings
from certvault.db.engine import create_session_factory
from certvault.db.redis import create_redis
from certvault.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from certvault.repos.pg_certificate_repo import PgCertificateRepo
from certvault.services.blob_store import BlobStore, InMemoryBlobStore, IpfsHttpBlobStore
from certvault.services.cache import CacheService, InMemoryCacheService, RedisCacheService
from certvault.services.certificates import CertificateService
from certvault.services.encryption import EncryptionEngine
from certvault.services.ingestion import IngestionPipeline
from certvault.services.ledger import InMemoryLedger, Ledger
from certvault.services.lifecycle import LifecycleService
from certvault.services.verification import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: EncryptionEngine
    repo: CertificateRepo
    blob_store: BlobStore
    ledger: Ledger
    cache: CacheService
    ingestion: IngestionPipeline
    lifecycle: LifecycleService
    certificates: CertificateService
    verification: VerificationService
    redis: Any = None
    _closers: list[Any] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        for close in reversed(self._closers):
            await close()
        self._closers.clear()


def build_services(
    settings: Settings,
    *,
    repo: CertificateRepo | None = None,
    blob_store: BlobStore | None = None,
    ledger: Ledger | None = None,
    cache: CacheService | None = None,
) -> Services:
    closers: list[Any] = []
    redis_client = None

    if repo is None:
        if settings.database_url:
            db_engine, session_factory = create_session_factory(settings)
            repo = PgCertificateRepo(session_factory)
            closers.append(db_engine.dispose)
        else:
            logger.info("No DATABASE_URL configured; using in-memory repository")
            repo = InMemoryCertificateRepo()

    if blob_store is None:
        if settings.ipfs_api_url:
            ipfs = IpfsHttpBlobStore(
                settings.ipfs_api_url, gateway_url=settings.ipfs_gateway_url
            )
            closers.append(ipfs.aclose)
            blob_store = ipfs
        else:
            logger.info("No IPFS_API_URL configured; using in-memory blob store")
            blob_store = InMemoryBlobStore()

    if ledger is None:
        ledger = InMemoryLedger()

    if cache is None:
        redis_client = create_redis(settings)
        if redis_client is not None:
            cache = RedisCacheService(redis_client)
            closers.append(redis_client.aclose)
        else:
            cache = InMemoryCacheService()

    engine = EncryptionEngine(
        iterations=settings.kdf_iterations, kdf=settings.kdf_algorithm
    )
    verification = VerificationService(
        repo,
        cache,
        ttl_seconds=settings.verification_cache_ttl,
        bulk_max_size=settings.batch_max_size,
    )
    lifecycle = LifecycleService(repo, on_change=verification.invalidate)
    certificates = CertificateService(
        repo=repo,
        engine=engine,
        blob_store=blob_store,
        ledger=ledger,
        lifecycle=lifecycle,
        batch_max_size=settings.batch_max_size,
    )

    return Services(
        settings=settings,
        engine=engine,
        repo=repo,
        blob_store=blob_store,
        ledger=ledger,
        cache=cache,
        ingestion=IngestionPipeline(),
        lifecycle=lifecycle,
        certificates=certificates,
        verification=verification,
        redis=redis_client,
        _closers=closers,
    )
