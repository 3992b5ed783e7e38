"""
Validation of datasource url/config combinations.

Every check raises DatasourceValidationError with a human readable message;
routers surface those messages as 400 responses.
"""

import logging
from typing import Any, Dict, Optional, Union

from app.models import DatasourceSource

from .config_models import (
    ClickHouseDatasourceConfig,
    CustomApiAuthentication,
    CustomApiDatasourceConfig,
    JaegerConfig,
    TempoConfig,
    parse_datasource_config,
)
from .exceptions import DatasourceValidationError

logger = logging.getLogger(__name__)

TRACE_ID_PLACEHOLDER = "{traceId}"
ATTRIBUTE_NAME_PLACEHOLDER = "{attributeName}"

_URL_REQUIRED_SOURCES = (DatasourceSource.TEMPO, DatasourceSource.JAEGER)


def validate_datasource_url(
    url: Optional[str], source: Union[DatasourceSource, str]
) -> None:
    """Tempo and Jaeger datasources must have a url."""
    if DatasourceSource(source) in _URL_REQUIRED_SOURCES and not url:
        raise DatasourceValidationError("URL is required for datasources")


def validate_clickhouse_config(
    url: Optional[str], config: Optional[ClickHouseDatasourceConfig]
) -> None:
    clickhouse = config.clickhouse if config is not None else None

    if not url and clickhouse is None:
        raise DatasourceValidationError(
            "URL or config.clickhouse is required for ClickHouse datasources"
        )

    if clickhouse is not None and not (
        clickhouse.host and clickhouse.database and clickhouse.table_name
    ):
        raise DatasourceValidationError(
            "ClickHouse config must include host, database, and tableName"
        )


def _endpoint_path(endpoint) -> Optional[str]:
    return endpoint.path if endpoint is not None else None


def validate_custom_api_authentication(
    authentication: Optional[CustomApiAuthentication],
) -> None:
    if authentication is None:
        return

    auth_type = authentication.type
    if auth_type == "basic":
        if not authentication.username or not authentication.password:
            raise DatasourceValidationError(
                "Basic authentication requires both username and password"
            )
    elif auth_type == "bearer":
        if not authentication.value:
            raise DatasourceValidationError("Bearer authentication requires a value")
    elif auth_type == "header":
        if not authentication.header_name or not authentication.value:
            raise DatasourceValidationError(
                "Header authentication requires both headerName and value"
            )
    else:
        raise DatasourceValidationError(
            'Authentication type must be "basic", "bearer" or "header"'
        )


def validate_custom_api_config(
    url: Optional[str], config: Optional[CustomApiDatasourceConfig]
) -> None:
    """
    Check a custom API config for the endpoints it needs.

    Nothing is checked when there is no customApi object. Otherwise search
    and searchByTraceId are required; attribute endpoints are required only
    when the matching capability is switched on.
    """
    custom_api = config.custom_api if config is not None else None
    if custom_api is None:
        return

    if not (custom_api.base_url or url):
        raise DatasourceValidationError(
            "Custom API config must include baseUrl or datasource.url must be provided"
        )

    endpoints = custom_api.endpoints
    search_path = _endpoint_path(endpoints.search) if endpoints else None
    if not search_path:
        raise DatasourceValidationError(
            "Custom API config must include endpoints.search.path"
        )

    trace_path = _endpoint_path(endpoints.search_by_trace_id)
    if not trace_path:
        raise DatasourceValidationError(
            "Custom API config must include endpoints.searchByTraceId.path"
        )
    if TRACE_ID_PLACEHOLDER not in trace_path:
        raise DatasourceValidationError(
            "Custom API endpoints.searchByTraceId.path must contain {traceId} placeholder"
        )

    capabilities = custom_api.capabilities
    if capabilities is not None and capabilities.get_attribute_names:
        if not _endpoint_path(endpoints.attribute_names):
            raise DatasourceValidationError(
                "Custom API config must include endpoints.attributeNames.path "
                "when getAttributeNames capability is enabled"
            )

    if capabilities is not None and capabilities.get_attribute_values:
        values_path = _endpoint_path(endpoints.attribute_values)
        if not values_path:
            raise DatasourceValidationError(
                "Custom API config must include endpoints.attributeValues.path "
                "when getAttributeValues capability is enabled"
            )
        if ATTRIBUTE_NAME_PLACEHOLDER not in values_path:
            raise DatasourceValidationError(
                "Custom API endpoints.attributeValues.path must contain "
                "{attributeName} placeholder"
            )

    validate_custom_api_authentication(custom_api.authentication)


def validate_otel_authentication(
    config: Optional[Union[TempoConfig, JaegerConfig]],
) -> None:
    authentication = config.authentication if config is not None else None
    if authentication is None:
        return

    if authentication.type == "basic":
        if not authentication.username or not authentication.password:
            raise DatasourceValidationError(
                "Basic authentication requires both username and password"
            )
    elif authentication.type == "bearer":
        if not authentication.token:
            raise DatasourceValidationError("Bearer authentication requires a token")
    elif authentication.type:
        raise DatasourceValidationError(
            'Authentication type must be "basic" or "bearer"'
        )


def validate_datasource_config(
    url: Optional[str],
    source: Union[DatasourceSource, str],
    config: Optional[Dict[str, Any]],
) -> None:
    """
    Validate a url/config pair for a datasource source.

    The url check always runs first, then the source specific checks.

    Raises:
        DatasourceValidationError: On the first failed check
    """
    try:
        source = DatasourceSource(source)
    except ValueError:
        raise DatasourceValidationError(f"Unsupported datasource source: {source}")

    validate_datasource_url(url, source)

    parsed = parse_datasource_config(source, config)

    if source == DatasourceSource.CLICKHOUSE:
        validate_clickhouse_config(url, parsed)
    elif source == DatasourceSource.CUSTOM_API:
        validate_custom_api_config(url, parsed)
    else:
        validate_otel_authentication(parsed)

    logger.debug(f"Datasource config valid for source {source.value}")
