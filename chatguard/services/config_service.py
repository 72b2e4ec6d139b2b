# chatguard/services/config_service.py
"""
Saved config listing and deletion. Creation and updates go through the
orchestrator (rate limit + quota).
"""

from typing import Any

from chatguard.auth.verify import AuthenticatedCaller
from chatguard.db import paths
from chatguard.db.document_store import (
    DocumentStore,
    Transaction,
    TransientStoreError,
    document_store,
)
from chatguard.infrastructure.audit.audit_logger import AuditLogger, audit_logger
from chatguard.infrastructure.observability.logging import get_logger
from chatguard.models.domain.config_domain import SavedConfig
from chatguard.security.sanitizer import validate_identifier
from chatguard.services.errors import AccessDenied, NotFound, TransientStoreFailure
from chatguard.services.sanction_service import SanctionService, sanction_service

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50


class ConfigService:
    def __init__(self, store: DocumentStore, sanctions: SanctionService, audit: AuditLogger):
        self.store = store
        self.sanctions = sanctions
        self.audit = audit

    async def list_configs(
        self,
        caller: AuthenticatedCaller | None,
        public: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
    ) -> dict:
        """The caller's own configs, or everyone's public ones."""
        user = await self.sanctions.get_verified_user(caller)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        index = paths.CONFIGS_PUBLIC_INDEX if public else paths.configs_by_owner_index(user.id)

        try:
            ids = await self.store.list_index(index, limit=limit, after=cursor)
            docs = await self.store.get_many([paths.config(cid) for cid in ids])
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

        configs = [
            SavedConfig.from_document(cid, doc).model_dump()
            for cid, doc in zip(ids, docs)
            if doc is not None
        ]
        return {
            "success": True,
            "configs": configs,
            "next_cursor": ids[-1] if len(ids) == limit else None,
        }

    async def delete_config(self, caller: AuthenticatedCaller | None, config_id: Any) -> dict:
        user = await self.sanctions.get_verified_user(caller)
        config_id = validate_identifier(config_id, "Config ID")

        async def _delete(txn: Transaction) -> str:
            doc = await txn.get(paths.config(config_id))
            if doc is None:
                raise NotFound("Config not found")
            owner_id = doc.get("user_id")
            # Owners delete their own; staff may remove anything
            if owner_id != user.id and not user.is_privileged:
                raise AccessDenied("Access denied")

            txn.delete(paths.config(config_id))
            txn.index_remove(paths.configs_by_owner_index(owner_id), config_id)
            txn.index_remove(paths.CONFIGS_PUBLIC_INDEX, config_id)
            return owner_id

        try:
            owner_id = await self.store.run_transaction(_delete)
        except TransientStoreError as e:
            raise TransientStoreFailure("Service temporarily unavailable. Please retry.") from e

        await self.audit.log(
            user_id=owner_id,
            action="config_deleted",
            resource_type="config",
            resource_id=config_id,
            actor_id=user.id,
        )
        return {"success": True}


config_service = ConfigService(
    store=document_store, sanctions=sanction_service, audit=audit_logger
)


def get_config_service() -> ConfigService:
    return config_service
