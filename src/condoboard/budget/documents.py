"""Tenant document library: uploaded files plus their catalogue rows.

Bytes live in the storage adapter under ``tenants/<slug>/documents/``; the
``documents`` table only holds the key. Upload writes the file first and the
row second, and removes the file again if the row cannot be written.
Delete removes the row first and the file second, so a storage
hiccup can at worst leave an orphaned file, never a row pointing at nothing
the user can still see.
"""

from __future__ import annotations

import uuid
from pathlib import PurePosixPath

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.condoboard.budget.repository import BudgetRepository
from src.condoboard.budget.schemas import DocumentRead
from src.condoboard.budget.service import RepositoryFactory
from src.condoboard.core.database import Database
from src.condoboard.core.errors import BuildingNotFound, DocumentNotFound, DocumentTooLarge
from src.condoboard.core.tenant import validate_slug
from src.condoboard.services.storage import StorageAdapter

logger = structlog.get_logger(__name__)

MAX_DOCUMENT_BYTES = 50 * 1024 * 1024


def document_key(slug: str, filename: str) -> str:
    """Storage key for a new upload; the original extension is kept."""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lstrip(".").lower()
    return f"tenants/{slug}/documents/{uuid.uuid4()}.{suffix or 'bin'}"


class DocumentService:
    def __init__(
        self,
        database: Database,
        storage: StorageAdapter,
        repository_factory: RepositoryFactory = BudgetRepository,
        max_bytes: int = MAX_DOCUMENT_BYTES,
    ) -> None:
        self._database = database
        self._storage = storage
        self._repository_factory = repository_factory
        self._max_bytes = max_bytes

    async def upload_document(
        self,
        slug: str,
        title: str,
        filename: str,
        data: bytes,
        actor_id: int,
        content_type: str | None = None,
        building_id: int | None = None,
    ) -> DocumentRead:
        """Store the file, then catalogue it.

        Raises:
            DocumentTooLarge: Payload exceeds the configured limit.
            BuildingNotFound: building_id given but unknown in this tenant.
        """
        validate_slug(slug)
        if len(data) > self._max_bytes:
            raise DocumentTooLarge(len(data), self._max_bytes)

        if building_id is not None:
            async def _check(session: AsyncSession) -> None:
                if await self._repository_factory(session).get_building(building_id) is None:
                    raise BuildingNotFound(building_id)

            await self._database.with_tenant(slug, _check)

        key = document_key(slug, filename)
        await self._storage.put(key, data, content_type)

        async def _insert(session: AsyncSession) -> DocumentRead:
            repo = self._repository_factory(session)
            document = await repo.insert_document(
                title=title, file_key=key, filename=filename, uploaded_by=actor_id, building_id=building_id
            )
            await repo.record_audit(actor_id, "create", "document", document.id, {"filename": filename})
            return document

        try:
            document = await self._database.with_tenant(slug, _insert)
        except Exception:
            await self._discard(slug, key)
            raise
        logger.info("document_uploaded", tenant=slug, document_id=document.id, size=len(data))
        return document

    async def list_documents(
        self, slug: str, building_id: int | None = None, limit: int = 50, offset: int = 0
    ) -> list[DocumentRead]:
        async def _list(session: AsyncSession) -> list[DocumentRead]:
            return await self._repository_factory(session).list_documents(building_id, limit, offset)

        return await self._database.with_tenant(slug, _list)

    async def download_document(self, slug: str, document_id: int) -> tuple[DocumentRead, bytes]:
        async def _get(session: AsyncSession) -> DocumentRead:
            document = await self._repository_factory(session).get_document(document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            return document

        document = await self._database.with_tenant(slug, _get)
        data = await self._storage.get(document.file_key)
        if data is None:
            logger.warning("document_missing_from_storage", tenant=slug, document_id=document_id)
            raise DocumentNotFound(document_id)
        return document, data

    async def delete_document(self, slug: str, document_id: int, actor_id: int) -> None:
        """Delete the row (and its period attachments), then the stored file.

        The storage delete is best effort: once the row is gone the document
        no longer exists for anyone, so a failure there is logged only.
        """

        async def _delete(session: AsyncSession) -> DocumentRead:
            repo = self._repository_factory(session)
            document = await repo.get_document(document_id)
            if document is None or not await repo.delete_document(document_id):
                raise DocumentNotFound(document_id)
            await repo.record_audit(actor_id, "delete", "document", document_id, {"filename": document.filename})
            return document

        document = await self._database.with_tenant(slug, _delete)
        await self._discard(slug, document.file_key, document_id)
        logger.info("document_deleted", tenant=slug, document_id=document_id)

    async def _discard(self, slug: str, key: str, document_id: int | None = None) -> None:
        """Best-effort removal of a stored file that no row points at."""
        try:
            await self._storage.delete(key)
        except Exception:
            logger.warning(
                "document_storage_delete_failed",
                tenant=slug,
                document_id=document_id,
                file_key=key,
                exc_info=True,
            )
