"""
Pydantic schemas for the datasources API
"""

from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, model_validator

from app.models import DatasourceSource, DatasourceType


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _url_configured_elsewhere(config: Optional[Dict[str, Any]]) -> bool:
    """ClickHouse connection details or a custom API baseUrl stand in for url."""
    if not isinstance(config, dict):
        return False
    custom_api = config.get("customApi")
    return bool(config.get("clickhouse")) or (
        isinstance(custom_api, dict) and bool(custom_api.get("baseUrl"))
    )


class DatasourceCreate(BaseModel):
    """Request model for creating a datasource"""

    name: str = Field(..., min_length=1, description="Datasource name")
    description: Optional[str] = None
    url: Optional[str] = Field(
        None,
        description="Backend URL (required for tempo and jaeger)",
        examples=["https://tempo.example.com"],
    )
    type: DatasourceType = DatasourceType.TRACES
    source: DatasourceSource
    config: Optional[Dict[str, Any]] = Field(
        None,
        description="Backend specific configuration (authentication, ClickHouse connection, custom API)",
    )

    @model_validator(mode="after")
    def check_url_format(self):
        if self.url and not _url_configured_elsewhere(self.config):
            if not _is_http_url(self.url):
                raise ValueError("url must be a valid http or https URL")
        return self


class DatasourceUpdate(BaseModel):
    """Request model for updating a datasource. Omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    url: Optional[str] = None
    type: Optional[DatasourceType] = None
    source: Optional[DatasourceSource] = None
    config: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_url_format(self):
        if self.url and not _url_configured_elsewhere(self.config):
            if not _is_http_url(self.url):
                raise ValueError("url must be a valid http or https URL")
        return self


class TestConnectionRequest(BaseModel):
    """An unsaved datasource configuration to check"""

    __test__ = False

    source: DatasourceSource
    url: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class ConnectionOverrides(BaseModel):
    """Url/config to use instead of the stored ones when probing a saved datasource"""

    url: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class ConnectionTestResult(BaseModel):
    success: bool
    message: str


class DatasourceListItemResponse(BaseModel):
    """Datasource without url and config"""

    id: str
    name: str
    description: Optional[str] = None
    type: DatasourceType
    source: DatasourceSource
    is_search_by_query_enabled: bool
    is_search_by_attributes_enabled: bool
    is_get_attribute_names_enabled: bool
    is_get_attribute_values_enabled: bool


class DatasourceResponse(DatasourceListItemResponse):
    url: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    organisation_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DatasourceMessageResponse(BaseModel):
    message: str
