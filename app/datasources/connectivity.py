"""
Connectivity test for datasources.

One best-effort check per call, no retries. Every failure is turned into a
ConnectivityResult with a classified message; test_connection never raises.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import clickhouse_connect
import httpx
from clickhouse_connect.driver.exceptions import OperationalError
from pydantic import BaseModel

from app.core.config import settings
from app.models import Datasource, DatasourceSource

from .auth_headers import build_auth_headers
from .custom_api import (
    CustomApiConfigMapper,
    TraceSearchParams,
    build_headers,
    build_search_params,
    build_url,
)
from .encryption import DatasourceConfigEncryption, datasource_config_encryption

logger = logging.getLogger(__name__)

CONNECTION_SUCCESSFUL = "Connection successful"
CONNECTION_TEST_FAILED = "Connection test failed"
HTTP_AUTH_FAILED = "Authentication failed"
HTTP_UNREACHABLE = "Unable to connect to datasource URL"
HTTP_NOT_FOUND = "Endpoint not found - check URL and path configuration"
CLICKHOUSE_MISSING_CONFIG = (
    "ClickHouse configuration missing: host and database are required"
)
CLICKHOUSE_UNREACHABLE = "Unable to connect to ClickHouse server"
CLICKHOUSE_AUTH_FAILED = "Authentication failed - check username and password"
CUSTOM_API_MISSING_BASE_URL = "Custom API baseUrl not configured"
MISSING_URL = "Datasource URL not configured"
UNSUPPORTED_DATASOURCE = "Unsupported datasource type"

_CHECK_PATHS = {
    DatasourceSource.TEMPO: "/api/search",
    DatasourceSource.JAEGER: "/api/v3/services",
}


class ConnectivityResult(BaseModel):
    success: bool
    message: str


def _failure(message: str) -> ConnectivityResult:
    return ConnectivityResult(success=False, message=message)


def classify_http_error(error: Exception) -> str:
    """Map an httpx error to a user facing message."""
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        if status_code in (401, 403):
            return HTTP_AUTH_FAILED
        if status_code == 404:
            return HTTP_NOT_FOUND
    elif isinstance(error, (httpx.ConnectError, httpx.TimeoutException)):
        return HTTP_UNREACHABLE
    return str(error) or CONNECTION_TEST_FAILED


def classify_clickhouse_error(error: Exception) -> str:
    """Map a ClickHouse client error to a user facing message."""
    if isinstance(error, (OperationalError, TimeoutError, ConnectionError)):
        return CLICKHOUSE_UNREACHABLE
    message = str(error)
    if "Authentication" in message or "password" in message:
        return CLICKHOUSE_AUTH_FAILED
    return message or CONNECTION_TEST_FAILED


class DatasourceConnectivityService:
    """
    Check a datasource's backend.

    - tempo: GET {url}/api/search
    - jaeger: GET {url}/api/v3/services
    - clickhouse: SELECT 1
    - custom_api: one search request over the last day with limit=1
    """

    def __init__(
        self,
        encryption: Optional[DatasourceConfigEncryption] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.encryption = encryption or datasource_config_encryption
        self.transport = transport
        self.timeout = settings.DATASOURCE_TEST_TIMEOUT_SECONDS

    async def test_connection(self, datasource: Datasource) -> ConnectivityResult:
        try:
            source = DatasourceSource(datasource.source)
        except ValueError:
            return _failure(UNSUPPORTED_DATASOURCE)

        try:
            if source in _CHECK_PATHS:
                result = await self._test_otel_backend(datasource, source)
            elif source == DatasourceSource.CLICKHOUSE:
                result = await self._test_clickhouse(datasource)
            elif source == DatasourceSource.CUSTOM_API:
                result = await self._test_custom_api(datasource)
            else:
                result = _failure(UNSUPPORTED_DATASOURCE)
        except Exception as e:
            logger.exception(
                f"Connection test for datasource {datasource.id} failed unexpectedly: {e}"
            )
            result = _failure(str(e) or CONNECTION_TEST_FAILED)

        if result.success:
            logger.info(f"Connection test succeeded for datasource {datasource.id}")
        else:
            logger.warning(
                f"Connection test failed for datasource {datasource.id}: {result.message}"
            )
        return result

    async def _send(self, url: str, headers: dict, params: Optional[dict] = None):
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.get(url, headers=headers, params=params)
            response.raise_for_status()

    async def _test_otel_backend(
        self, datasource: Datasource, source: DatasourceSource
    ) -> ConnectivityResult:
        if not datasource.url:
            return _failure(MISSING_URL)

        headers = {
            "Content-Type": "application/json",
            **build_auth_headers(datasource, self.encryption),
        }
        url = f"{datasource.url}{_CHECK_PATHS[source]}"

        try:
            await self._send(url, headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"{source.value} check of {url} failed: {e}")
            return _failure(classify_http_error(e))

        return ConnectivityResult(success=True, message=CONNECTION_SUCCESSFUL)

    async def _test_custom_api(self, datasource: Datasource) -> ConnectivityResult:
        decrypted = self.encryption.decrypt_config(
            DatasourceSource.CUSTOM_API, datasource.config
        )
        config = CustomApiConfigMapper.map(
            Datasource(id=datasource.id, url=datasource.url, config=decrypted)
        )
        if not config.base_url:
            return _failure(CUSTOM_API_MISSING_BASE_URL)

        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=settings.DATASOURCE_TEST_LOOKBACK_HOURS)
        params = build_search_params(
            TraceSearchParams(start=start, end=end, limit=1), config
        )
        url = build_url(config.base_url, config.endpoints.search.path)

        headers = build_headers(config)

        try:
            await self._send(url, headers, params)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Custom API check of {url} failed: {e}")
            return _failure(classify_http_error(e))

        return ConnectivityResult(success=True, message=CONNECTION_SUCCESSFUL)

    def _query_clickhouse(self, connection: dict) -> None:
        client = clickhouse_connect.get_client(
            host=connection["host"],
            port=int(connection.get("port") or settings.CLICKHOUSE_DEFAULT_PORT),
            interface=connection.get("protocol") or settings.CLICKHOUSE_DEFAULT_PROTOCOL,
            username=connection.get("username") or settings.CLICKHOUSE_DEFAULT_USERNAME,
            password=connection.get("password") or "",
            database=connection["database"],
            connect_timeout=self.timeout,
            send_receive_timeout=self.timeout,
        )
        try:
            client.query("SELECT 1")
        finally:
            client.close()

    async def _test_clickhouse(self, datasource: Datasource) -> ConnectivityResult:
        decrypted = self.encryption.decrypt_config(
            DatasourceSource.CLICKHOUSE, datasource.config
        )
        connection = (decrypted or {}).get("clickhouse") or {}
        if not connection.get("host") or not connection.get("database"):
            return _failure(CLICKHOUSE_MISSING_CONFIG)

        try:
            await asyncio.to_thread(self._query_clickhouse, connection)
        except Exception as e:
            logger.debug(
                f"ClickHouse check of {connection['host']} failed: {e}"
            )
            return _failure(classify_clickhouse_error(e))

        return ConnectivityResult(success=True, message=CONNECTION_SUCCESSFUL)


datasource_connectivity_service = DatasourceConnectivityService()
