"""
Typed views over the JSON `config` column of a datasource.

The stored config is a free-form JSON object whose shape depends on the
datasource source. Each source gets its own frozen model here; unknown keys
are kept (extra="allow") so a round trip through the model never drops data
a client stored. Field aliases keep the camelCase names used on the wire.
"""

from typing import Any, ClassVar, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.models import DatasourceSource

from .exceptions import DatasourceValidationError


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


def _scalar_to_str(value: Any) -> Any:
    """Numbers in string fields (a numeric password, a port-like header) are kept as text."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# Tempo / Jaeger
# ---------------------------------------------------------------------------


class OtelAuthentication(_ConfigModel):
    """Authentication for Tempo and Jaeger. `type` is "basic" or "bearer"."""

    type: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    @field_validator("username", "password", "token", mode="before")
    @classmethod
    def stringify_numbers(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class TempoConfig(_ConfigModel):
    source: ClassVar[DatasourceSource] = DatasourceSource.TEMPO

    authentication: Optional[OtelAuthentication] = None


class JaegerConfig(_ConfigModel):
    source: ClassVar[DatasourceSource] = DatasourceSource.JAEGER

    authentication: Optional[OtelAuthentication] = None


# ---------------------------------------------------------------------------
# ClickHouse
# ---------------------------------------------------------------------------


class ClickHouseConnectionConfig(_ConfigModel):
    host: Optional[str] = None
    port: Optional[Union[int, str]] = None
    database: Optional[str] = None
    table_name: Optional[str] = Field(None, alias="tableName")
    username: Optional[str] = None
    password: Optional[str] = None
    protocol: Optional[str] = None

    @field_validator(
        "host", "database", "table_name", "username", "password", "protocol", mode="before"
    )
    @classmethod
    def stringify_numbers(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class ClickHouseDatasourceConfig(_ConfigModel):
    source: ClassVar[DatasourceSource] = DatasourceSource.CLICKHOUSE

    clickhouse: Optional[ClickHouseConnectionConfig] = None


# ---------------------------------------------------------------------------
# Custom API
# ---------------------------------------------------------------------------


class CustomApiEndpoint(_ConfigModel):
    path: Optional[str] = None


class CustomApiEndpoints(_ConfigModel):
    search: Optional[CustomApiEndpoint] = None
    search_by_trace_id: Optional[CustomApiEndpoint] = Field(
        None, alias="searchByTraceId"
    )
    attribute_names: Optional[CustomApiEndpoint] = Field(None, alias="attributeNames")
    attribute_values: Optional[CustomApiEndpoint] = Field(
        None, alias="attributeValues"
    )


class CustomApiCapabilities(_ConfigModel):
    search_by_query: Optional[bool] = Field(None, alias="searchByQuery")
    search_by_attributes: Optional[bool] = Field(None, alias="searchByAttributes")
    filter_by_attribute_exists: Optional[bool] = Field(
        None, alias="filterByAttributeExists"
    )
    get_attribute_names: Optional[bool] = Field(None, alias="getAttributeNames")
    get_attribute_values: Optional[bool] = Field(None, alias="getAttributeValues")


class CustomApiAuthentication(_ConfigModel):
    """
    Authentication for a custom trace API.

    - basic: username + password
    - bearer: value (sent as "Authorization: Bearer <value>")
    - header: headerName + value (sent as "<headerName>: <value>")
    """

    type: Optional[str] = None
    header_name: Optional[str] = Field(None, alias="headerName")
    value: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @field_validator(
        "header_name", "value", "username", "password", mode="before"
    )
    @classmethod
    def stringify_numbers(cls, value: Any) -> Any:
        return _scalar_to_str(value)


class CustomApiSettings(_ConfigModel):
    base_url: Optional[str] = Field(None, alias="baseUrl")
    endpoints: Optional[CustomApiEndpoints] = None
    capabilities: Optional[CustomApiCapabilities] = None
    authentication: Optional[CustomApiAuthentication] = None
    headers: Optional[Dict[str, str]] = None

    @field_validator("headers", mode="before")
    @classmethod
    def stringify_header_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {name: _scalar_to_str(header) for name, header in value.items()}
        return value


class CustomApiDatasourceConfig(_ConfigModel):
    source: ClassVar[DatasourceSource] = DatasourceSource.CUSTOM_API

    custom_api: Optional[CustomApiSettings] = Field(None, alias="customApi")


DatasourceConfig = Union[
    TempoConfig, JaegerConfig, ClickHouseDatasourceConfig, CustomApiDatasourceConfig
]

CONFIG_MODELS: Dict[DatasourceSource, Type[_ConfigModel]] = {
    DatasourceSource.TEMPO: TempoConfig,
    DatasourceSource.JAEGER: JaegerConfig,
    DatasourceSource.CLICKHOUSE: ClickHouseDatasourceConfig,
    DatasourceSource.CUSTOM_API: CustomApiDatasourceConfig,
}


def _format_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", "")


def parse_datasource_config(
    source: Union[DatasourceSource, str], raw: Optional[Dict[str, Any]]
) -> Optional[DatasourceConfig]:
    """
    Parse a raw config dict into the model of the given source.

    Returns None when there is no config.

    Raises:
        DatasourceValidationError: If the source is unknown or the config
            does not fit the source's shape
    """
    if raw is None:
        return None

    try:
        source = DatasourceSource(source)
    except ValueError:
        raise DatasourceValidationError(f"Unsupported datasource source: {source}")

    if not isinstance(raw, dict):
        raise DatasourceValidationError("Datasource config must be a JSON object")

    model = CONFIG_MODELS[source]
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise DatasourceValidationError(
            f"Invalid {source.value} config: {_format_validation_error(e)}"
        ) from e


def dump_datasource_config(config: Optional[DatasourceConfig]) -> Optional[Dict[str, Any]]:
    """Serialize a config model back to its stored JSON shape."""
    if config is None:
        return None
    return config.model_dump(by_alias=True, exclude_unset=True)
