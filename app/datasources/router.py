"""
Datasources API router.
Manage the trace datasources of an organisation and test their connectivity.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.permissions import require_datasource_read, require_datasource_write
from app.core.database import get_db
from app.models import Datasource, DatasourceType, User

from .connectivity import datasource_connectivity_service
from .exceptions import (
    DatasourceConfigIntegrityError,
    DatasourceNotFoundError,
    DatasourceValidationError,
)
from .schemas import (
    ConnectionOverrides,
    ConnectionTestResult,
    DatasourceCreate,
    DatasourceListItemResponse,
    DatasourceMessageResponse,
    DatasourceResponse,
    DatasourceUpdate,
    TestConnectionRequest,
)
from .service import datasource_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/organisations/{organisation_id}/datasources", tags=["datasources"]
)


def _to_http_exception(error: Exception) -> HTTPException:
    if isinstance(error, DatasourceNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DatasourceValidationError):
        return HTTPException(status_code=400, detail=str(error))
    logger.error(f"Datasource config integrity error: {error}")
    return HTTPException(status_code=500, detail=str(error))


@router.post(
    "", response_model=DatasourceResponse, status_code=status.HTTP_201_CREATED
)
async def create_datasource(
    organisation_id: str,
    request: DatasourceCreate,
    current_user: User = Depends(require_datasource_write),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a datasource in an organisation.

    Required:
    - name
    - source: tempo, jaeger, clickhouse or custom_api
    - url for tempo and jaeger; ClickHouse and custom APIs may carry
      their address in config instead
    """
    try:
        return await datasource_service.create(
            organisation_id, current_user.id, request, db
        )
    except (DatasourceValidationError, DatasourceConfigIntegrityError) as e:
        raise _to_http_exception(e)


@router.get("", response_model=List[DatasourceResponse])
async def list_datasources(
    organisation_id: str,
    current_user: User = Depends(require_datasource_read),
    db: AsyncSession = Depends(get_db),
):
    """List the datasources of an organisation, ordered by name."""
    try:
        return await datasource_service.list(organisation_id, db)
    except DatasourceConfigIntegrityError as e:
        raise _to_http_exception(e)


@router.get("/list", response_model=List[DatasourceListItemResponse])
async def list_datasource_items(
    organisation_id: str,
    current_user: User = Depends(require_datasource_read),
    db: AsyncSession = Depends(get_db),
):
    """List datasources without url and config."""
    return await datasource_service.list_items(organisation_id, db)


@router.post("/test-connection", response_model=ConnectionTestResult)
async def test_connection(
    organisation_id: str,
    request: TestConnectionRequest,
    current_user: User = Depends(require_datasource_write),
):
    """Test an unsaved datasource configuration. Always answers 200."""
    datasource = Datasource(
        id="test",
        name="",
        url=request.url or "",
        type=DatasourceType.TRACES,
        source=request.source,
        config=request.config or {},
        organisation_id=organisation_id,
    )
    result = await datasource_connectivity_service.test_connection(datasource)
    return ConnectionTestResult(success=result.success, message=result.message)


@router.get("/{datasource_id}", response_model=DatasourceResponse)
async def get_datasource(
    organisation_id: str,
    datasource_id: str,
    current_user: User = Depends(require_datasource_read),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await datasource_service.get(organisation_id, datasource_id, db)
    except (DatasourceNotFoundError, DatasourceConfigIntegrityError) as e:
        raise _to_http_exception(e)


@router.put("/{datasource_id}", response_model=DatasourceResponse)
async def update_datasource(
    organisation_id: str,
    datasource_id: str,
    request: DatasourceUpdate,
    current_user: User = Depends(require_datasource_write),
    db: AsyncSession = Depends(get_db),
):
    """Update a datasource. A config in the body is merged over the stored one."""
    try:
        return await datasource_service.update(
            organisation_id, datasource_id, request, db, user_id=current_user.id
        )
    except (
        DatasourceNotFoundError,
        DatasourceValidationError,
        DatasourceConfigIntegrityError,
    ) as e:
        raise _to_http_exception(e)


@router.delete("/{datasource_id}", response_model=DatasourceMessageResponse)
async def delete_datasource(
    organisation_id: str,
    datasource_id: str,
    current_user: User = Depends(require_datasource_write),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await datasource_service.remove(
            organisation_id, datasource_id, db, user_id=current_user.id
        )
    except DatasourceNotFoundError as e:
        raise _to_http_exception(e)


@router.post("/{datasource_id}/test-connection", response_model=ConnectionTestResult)
async def test_stored_connection(
    organisation_id: str,
    datasource_id: str,
    overrides: Optional[ConnectionOverrides] = Body(None),
    current_user: User = Depends(require_datasource_read),
    db: AsyncSession = Depends(get_db),
):
    """
    Test a saved datasource.

    A url or config in the body is used instead of the stored value.
    """
    try:
        datasource = await datasource_service.find_by_id(
            organisation_id, datasource_id, db
        )
    except DatasourceNotFoundError as e:
        raise _to_http_exception(e)

    if overrides is not None and (overrides.url or overrides.config):
        datasource = Datasource(
            id=datasource.id,
            name=datasource.name,
            url=overrides.url or datasource.url,
            type=datasource.type,
            source=datasource.source,
            config=overrides.config or datasource.config,
            organisation_id=datasource.organisation_id,
        )

    result = await datasource_connectivity_service.test_connection(datasource)
    return ConnectionTestResult(success=result.success, message=result.message)
