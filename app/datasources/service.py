"""
Datasource CRUD for an organisation.

Configs are validated before they are stored and their secrets are encrypted
at rest. Responses carry the decrypted config, or a masked one when
DATASOURCE_MASK_SECRETS_IN_RESPONSES is enabled.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models import Datasource, DatasourceSource
from app.utils.token_processor import TokenDecryptionError

from .custom_api import resolve_capabilities
from .encryption import DatasourceConfigEncryption, datasource_config_encryption
from .exceptions import DatasourceConfigIntegrityError, DatasourceNotFoundError
from .schemas import (
    DatasourceCreate,
    DatasourceListItemResponse,
    DatasourceMessageResponse,
    DatasourceResponse,
    DatasourceUpdate,
)
from .validators import validate_datasource_config

logger = logging.getLogger(__name__)

_FULLY_CAPABLE_SOURCES = (DatasourceSource.CLICKHOUSE, DatasourceSource.TEMPO)


def get_capability_flags(datasource: Datasource) -> Dict[str, bool]:
    """Query capabilities exposed to clients for a datasource."""
    source = DatasourceSource(datasource.source)

    if source == DatasourceSource.CUSTOM_API:
        config = datasource.config if isinstance(datasource.config, dict) else {}
        custom_api = config.get("customApi")
        capabilities = resolve_capabilities(
            custom_api.get("capabilities") if isinstance(custom_api, dict) else None
        )
        return {
            "is_search_by_query_enabled": capabilities.search_by_query,
            "is_search_by_attributes_enabled": capabilities.search_by_attributes,
            "is_get_attribute_names_enabled": capabilities.get_attribute_names,
            "is_get_attribute_values_enabled": capabilities.get_attribute_values,
        }

    enabled = source in _FULLY_CAPABLE_SOURCES
    return {
        "is_search_by_query_enabled": enabled,
        "is_search_by_attributes_enabled": enabled,
        "is_get_attribute_names_enabled": enabled,
        "is_get_attribute_values_enabled": enabled,
    }


def _audit_state(datasource: Datasource) -> Dict[str, Any]:
    return {
        "id": datasource.id,
        "name": datasource.name,
        "description": datasource.description,
        "url": datasource.url,
        "type": getattr(datasource.type, "value", datasource.type),
        "source": getattr(datasource.source, "value", datasource.source),
        "organisation_id": datasource.organisation_id,
    }


class DatasourceService:
    """Service for managing the datasources of an organisation"""

    def __init__(self, encryption: Optional[DatasourceConfigEncryption] = None):
        self.encryption = encryption or datasource_config_encryption

    # ------------------------------------------------------------------
    # Response mapping
    # ------------------------------------------------------------------

    def _response_config(self, datasource: Datasource) -> Optional[Dict[str, Any]]:
        if not datasource.config:
            return datasource.config

        if settings.DATASOURCE_MASK_SECRETS_IN_RESPONSES:
            return self.encryption.mask_config_for_response(
                datasource.source, datasource.config
            )

        try:
            return self.encryption.decrypt_config(datasource.source, datasource.config)
        except TokenDecryptionError as e:
            raise DatasourceConfigIntegrityError(
                f"Stored secrets of datasource {datasource.id} cannot be decrypted"
            ) from e

    def to_response(self, datasource: Datasource) -> DatasourceResponse:
        return DatasourceResponse(
            id=datasource.id,
            name=datasource.name,
            description=datasource.description,
            url=datasource.url,
            type=datasource.type,
            source=datasource.source,
            config=self._response_config(datasource),
            organisation_id=datasource.organisation_id,
            created_at=datasource.created_at,
            updated_at=datasource.updated_at,
            **get_capability_flags(datasource),
        )

    @staticmethod
    def to_list_item(datasource: Datasource) -> DatasourceListItemResponse:
        return DatasourceListItemResponse(
            id=datasource.id,
            name=datasource.name,
            description=datasource.description,
            type=datasource.type,
            source=datasource.source,
            **get_capability_flags(datasource),
        )

    @staticmethod
    def _record_audit(
        action: str,
        actor_id: Optional[str],
        organisation_id: str,
        datasource_id: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        event = {
            "action": action,
            "actor_id": actor_id,
            "actor_type": "user",
            "resource_type": "datasource",
            "resource_id": datasource_id,
            "organisation_id": organisation_id,
            "before_state": before,
            "after_state": after,
            "metadata": metadata or {},
        }
        logger.info(f"Audit event: {json.dumps(event, default=str)}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get_owned(
        self, organisation_id: str, datasource_id: str, db: AsyncSession
    ) -> Datasource:
        result = await db.execute(
            select(Datasource).where(
                Datasource.id == datasource_id,
                Datasource.organisation_id == organisation_id,
            )
        )
        datasource = result.scalar_one_or_none()
        if not datasource:
            raise DatasourceNotFoundError(datasource_id)
        return datasource

    async def _list_ordered(
        self, organisation_id: str, db: AsyncSession
    ) -> List[Datasource]:
        result = await db.execute(
            select(Datasource)
            .where(Datasource.organisation_id == organisation_id)
            .order_by(Datasource.name.asc())
        )
        return list(result.scalars().all())

    async def list(
        self, organisation_id: str, db: AsyncSession
    ) -> List[DatasourceResponse]:
        datasources = await self._list_ordered(organisation_id, db)
        return [self.to_response(datasource) for datasource in datasources]

    async def list_items(
        self, organisation_id: str, db: AsyncSession
    ) -> List[DatasourceListItemResponse]:
        datasources = await self._list_ordered(organisation_id, db)
        return [self.to_list_item(datasource) for datasource in datasources]

    async def get(
        self, organisation_id: str, datasource_id: str, db: AsyncSession
    ) -> DatasourceResponse:
        datasource = await self._get_owned(organisation_id, datasource_id, db)
        return self.to_response(datasource)

    async def find_by_id(
        self, organisation_id: str, datasource_id: str, db: AsyncSession
    ) -> Datasource:
        """Stored datasource with its config still encrypted."""
        return await self._get_owned(organisation_id, datasource_id, db)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        organisation_id: str,
        user_id: Optional[str],
        data: DatasourceCreate,
        db: AsyncSession,
    ) -> DatasourceResponse:
        """
        Create a datasource.

        Raises:
            DatasourceValidationError: If url/config are invalid for the source
        """
        validate_datasource_config(data.url, data.source, data.config)

        encrypted_config = (
            self.encryption.encrypt_config(data.source, data.config)
            if data.config
            else None
        )

        datasource = Datasource(
            id=str(uuid.uuid4()),
            name=data.name,
            description=data.description,
            url=data.url,
            type=data.type,
            source=data.source,
            config=encrypted_config,
            organisation_id=organisation_id,
            created_by_id=user_id,
        )
        db.add(datasource)
        await db.commit()
        await db.refresh(datasource)

        logger.info(
            f"Created {datasource.source.value} datasource {datasource.id} "
            f"in organisation {organisation_id}"
        )
        self._record_audit(
            "datasource.created",
            user_id,
            organisation_id,
            datasource.id,
            after=_audit_state(datasource),
            metadata={"creator_id": user_id},
        )
        return self.to_response(datasource)

    async def update(
        self,
        organisation_id: str,
        datasource_id: str,
        data: DatasourceUpdate,
        db: AsyncSession,
        user_id: Optional[str] = None,
    ) -> DatasourceResponse:
        """
        Update a datasource.

        An empty url clears it. A new config is shallow-merged over the stored
        one and re-encrypted.

        Raises:
            DatasourceNotFoundError: If the datasource is not in the organisation
            DatasourceValidationError: If the resulting url/config are invalid
        """
        datasource = await self._get_owned(organisation_id, datasource_id, db)
        before = _audit_state(datasource)

        changes = data.model_dump(exclude_unset=True)
        if changes.get("url") == "":
            changes["url"] = None
        for required_field in ("name", "type", "source"):
            if required_field in changes and changes[required_field] is None:
                del changes[required_field]

        source = changes.get("source") or datasource.source

        if "url" in changes or "config" in changes:
            url_to_validate = changes["url"] if "url" in changes else datasource.url
            config_to_validate = changes.get("config")
            if config_to_validate is None:
                config_to_validate = datasource.config
            validate_datasource_config(url_to_validate, source, config_to_validate)

        if "config" in changes:
            merged_config = {**(datasource.config or {}), **(changes["config"] or {})}
            changes["config"] = self.encryption.encrypt_config(source, merged_config)

        for field, value in changes.items():
            setattr(datasource, field, value)

        await db.commit()
        await db.refresh(datasource)

        logger.info(
            f"Updated datasource {datasource_id} in organisation {organisation_id}"
        )
        self._record_audit(
            "datasource.updated",
            user_id,
            organisation_id,
            datasource_id,
            before=before,
            after=_audit_state(datasource),
            metadata={"changed_fields": sorted(data.model_fields_set)},
        )
        return self.to_response(datasource)

    async def remove(
        self,
        organisation_id: str,
        datasource_id: str,
        db: AsyncSession,
        user_id: Optional[str] = None,
    ) -> DatasourceMessageResponse:
        datasource = await self._get_owned(organisation_id, datasource_id, db)
        before = _audit_state(datasource)

        await db.delete(datasource)
        await db.commit()

        logger.info(
            f"Removed datasource {datasource_id} from organisation {organisation_id}"
        )
        self._record_audit(
            "datasource.deleted",
            user_id,
            organisation_id,
            datasource_id,
            before=before,
        )
        return DatasourceMessageResponse(message="Datasource deleted successfully")


datasource_service = DatasourceService()
