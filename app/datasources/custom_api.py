"""
Custom trace API support: resolving a datasource into a request-ready config
and building URLs, headers and search parameters from it.
"""

import base64
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config_models import CustomApiAuthentication
from .exceptions import DatasourceConfigIntegrityError


class ResolvedEndpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = ""


class ResolvedCustomApiEndpoints(BaseModel):
    model_config = ConfigDict(frozen=True)

    search: ResolvedEndpoint
    search_by_trace_id: ResolvedEndpoint
    attribute_names: Optional[ResolvedEndpoint] = None
    attribute_values: Optional[ResolvedEndpoint] = None


class ResolvedCustomApiCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_by_query: bool = True
    search_by_attributes: bool = False
    filter_by_attribute_exists: bool = False
    get_attribute_names: bool = False
    get_attribute_values: bool = False


class ResolvedCustomApiConfig(BaseModel):
    """A custom API config with every default applied."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    endpoints: ResolvedCustomApiEndpoints
    capabilities: ResolvedCustomApiCapabilities
    authentication: Optional[CustomApiAuthentication] = None
    headers: Dict[str, str] = Field(default_factory=dict)


class TraceSearchParams(BaseModel):
    """Search parameters in the shape the trace query layer hands them over."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = None
    query: Optional[str] = None
    attributes: Optional[str] = None
    filter_by_attribute_exists: Optional[List[str]] = None
    min_duration: Optional[str] = None
    max_duration: Optional[str] = None
    service_name: Optional[str] = None
    operation_name: Optional[str] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


def resolve_capabilities(raw: Any) -> ResolvedCustomApiCapabilities:
    """searchByQuery is on unless switched off; the rest need an explicit true."""
    raw = _as_dict(raw)
    return ResolvedCustomApiCapabilities(
        search_by_query=raw.get("searchByQuery") is not False,
        search_by_attributes=raw.get("searchByAttributes") is True,
        filter_by_attribute_exists=raw.get("filterByAttributeExists") is True,
        get_attribute_names=raw.get("getAttributeNames") is True,
        get_attribute_values=raw.get("getAttributeValues") is True,
    )


def _optional_endpoint(raw: Any) -> Optional[ResolvedEndpoint]:
    if not isinstance(raw, dict):
        return None
    path = raw.get("path")
    return ResolvedEndpoint(path=path if isinstance(path, str) else "")


class CustomApiConfigMapper:
    """Resolve a custom_api datasource into a ResolvedCustomApiConfig."""

    @staticmethod
    def map(datasource) -> ResolvedCustomApiConfig:
        """
        Map a datasource (url + decrypted config) to its resolved custom API config.

        baseUrl falls back to the datasource url. searchByQuery is on unless it
        is explicitly switched off; every other capability is on only when it
        is explicitly true. Malformed sub-objects fall back to defaults.

        Raises:
            DatasourceConfigIntegrityError: If the config has no customApi object
        """
        config = datasource.config if isinstance(datasource.config, dict) else {}
        custom_api = config.get("customApi")
        if not isinstance(custom_api, dict):
            raise DatasourceConfigIntegrityError(
                "Custom API datasource is missing its customApi config"
            )

        base_url = custom_api.get("baseUrl") or datasource.url or ""
        endpoints = _as_dict(custom_api.get("endpoints"))

        authentication = None
        if isinstance(custom_api.get("authentication"), dict):
            try:
                authentication = CustomApiAuthentication.model_validate(
                    custom_api["authentication"]
                )
            except ValidationError:
                authentication = None

        headers = {
            str(name): str(value)
            for name, value in _as_dict(custom_api.get("headers")).items()
        }

        return ResolvedCustomApiConfig(
            base_url=_strip_trailing_slash(str(base_url)),
            endpoints=ResolvedCustomApiEndpoints(
                search=_optional_endpoint(endpoints.get("search"))
                or ResolvedEndpoint(),
                search_by_trace_id=_optional_endpoint(endpoints.get("searchByTraceId"))
                or ResolvedEndpoint(),
                attribute_names=_optional_endpoint(endpoints.get("attributeNames")),
                attribute_values=_optional_endpoint(endpoints.get("attributeValues")),
            ),
            capabilities=resolve_capabilities(custom_api.get("capabilities")),
            authentication=authentication,
            headers=headers,
        )


def build_url(base_url: str, path: str) -> str:
    """Join a base url and an endpoint path with exactly one slash between them."""
    normalized_path = path if path.startswith("/") else f"/{path}"
    return f"{_strip_trailing_slash(base_url)}{normalized_path}"


def build_headers(config: ResolvedCustomApiConfig) -> Dict[str, str]:
    """Content-Type, then the configured static headers, then authentication."""
    headers = {"Content-Type": "application/json", **config.headers}

    auth = config.authentication
    if auth is None:
        return headers

    if auth.type == "bearer" and auth.value:
        headers["Authorization"] = f"Bearer {auth.value}"
    elif auth.type == "header" and auth.header_name and auth.value:
        headers[auth.header_name] = auth.value
    elif auth.type == "basic" and auth.username and auth.password:
        credentials = base64.b64encode(
            f"{auth.username}:{auth.password}".encode()
        ).decode()
        headers["Authorization"] = f"Basic {credentials}"

    return headers


def _epoch_seconds(value: datetime) -> int:
    return round(value.timestamp())


def build_search_params(
    search_params: TraceSearchParams, config: ResolvedCustomApiConfig
) -> Dict[str, Union[str, int]]:
    """
    Build the query string parameters for a search request.

    start/end are sent as epoch seconds. Free-text query, attribute filters
    and existence filters are only sent when the API declares the capability.
    """
    params: Dict[str, Union[str, int]] = {}

    if search_params.start is not None:
        params["start"] = _epoch_seconds(search_params.start)
    if search_params.end is not None:
        params["end"] = _epoch_seconds(search_params.end)
    if search_params.limit is not None:
        params["limit"] = search_params.limit

    capabilities = config.capabilities
    if search_params.query and capabilities.search_by_query:
        params["q"] = search_params.query
    if search_params.attributes and capabilities.search_by_attributes:
        params["attributes"] = search_params.attributes
    if (
        search_params.filter_by_attribute_exists
        and capabilities.filter_by_attribute_exists
    ):
        params["filterByAttributeExists"] = ",".join(
            search_params.filter_by_attribute_exists
        )

    if search_params.min_duration:
        params["minDuration"] = search_params.min_duration
    if search_params.max_duration:
        params["maxDuration"] = search_params.max_duration
    if search_params.service_name:
        params["serviceName"] = search_params.service_name
    if search_params.operation_name:
        params["operationName"] = search_params.operation_name

    return params
