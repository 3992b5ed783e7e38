"""
Encryption, decryption and masking of the secret fields inside datasource configs.

Secret locations per source:
- tempo / jaeger: authentication.password (basic), authentication.token (bearer)
- clickhouse: clickhouse.password
- custom_api: customApi.authentication.password (basic),
  customApi.authentication.value (bearer, header)

All operations return a new config dict; the input is never modified.
"""

import logging
from typing import Any, Callable, Dict, Optional, Union

from app.models import DatasourceSource
from app.utils.token_processor import TokenProcessor, token_processor

from .config_models import (
    ClickHouseDatasourceConfig,
    CustomApiDatasourceConfig,
    DatasourceConfig,
    JaegerConfig,
    TempoConfig,
    dump_datasource_config,
    parse_datasource_config,
)

logger = logging.getLogger(__name__)

MASKED_VALUE = "***"

SecretTransform = Callable[[str], str]


def _transform_otel_secrets(
    config: Union[TempoConfig, JaegerConfig], transform: SecretTransform
) -> Union[TempoConfig, JaegerConfig]:
    auth = config.authentication
    if auth is None:
        return config

    if auth.type == "basic" and auth.password:
        auth = auth.model_copy(update={"password": transform(auth.password)})
    elif auth.type == "bearer" and auth.token:
        auth = auth.model_copy(update={"token": transform(auth.token)})
    else:
        return config

    return config.model_copy(update={"authentication": auth})


def _transform_clickhouse_secrets(
    config: ClickHouseDatasourceConfig, transform: SecretTransform
) -> ClickHouseDatasourceConfig:
    clickhouse = config.clickhouse
    if clickhouse is None or not clickhouse.password:
        return config

    clickhouse = clickhouse.model_copy(
        update={"password": transform(clickhouse.password)}
    )
    return config.model_copy(update={"clickhouse": clickhouse})


def _transform_custom_api_secrets(
    config: CustomApiDatasourceConfig, transform: SecretTransform
) -> CustomApiDatasourceConfig:
    custom_api = config.custom_api
    auth = custom_api.authentication if custom_api is not None else None
    if auth is None:
        return config

    if auth.type == "basic" and auth.password:
        auth = auth.model_copy(update={"password": transform(auth.password)})
    elif auth.type in ("bearer", "header") and auth.value:
        auth = auth.model_copy(update={"value": transform(auth.value)})
    else:
        return config

    custom_api = custom_api.model_copy(update={"authentication": auth})
    return config.model_copy(update={"custom_api": custom_api})


_SECRET_TRANSFORMERS = {
    DatasourceSource.TEMPO: _transform_otel_secrets,
    DatasourceSource.JAEGER: _transform_otel_secrets,
    DatasourceSource.CLICKHOUSE: _transform_clickhouse_secrets,
    DatasourceSource.CUSTOM_API: _transform_custom_api_secrets,
}


class DatasourceConfigEncryption:
    """Applies the token processor to every secret field of a datasource config."""

    def __init__(self, processor: Optional[TokenProcessor] = None):
        self.processor = processor or token_processor

    def _apply(
        self,
        source: Union[DatasourceSource, str],
        config: Optional[Dict[str, Any]],
        transform: SecretTransform,
    ) -> Optional[Dict[str, Any]]:
        if config is None:
            return None

        parsed: DatasourceConfig = parse_datasource_config(source, config)
        transformer = _SECRET_TRANSFORMERS[parsed.source]
        return dump_datasource_config(transformer(parsed, transform))

    def _encrypt_value(self, value: str) -> str:
        if self.processor.is_encrypted(value):
            return value
        return self.processor.encrypt(value)

    def _decrypt_value(self, value: str) -> str:
        if not self.processor.is_encrypted(value):
            return value
        return self.processor.decrypt(value)

    def encrypt_config(
        self, source: Union[DatasourceSource, str], config: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Encrypt plain secrets. Values already encrypted are left as they are."""
        return self._apply(source, config, self._encrypt_value)

    def decrypt_config(
        self, source: Union[DatasourceSource, str], config: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """
        Decrypt encrypted secrets. Plain values are left as they are.

        Raises:
            TokenDecryptionError: If a marked value was encrypted with another key
        """
        return self._apply(source, config, self._decrypt_value)

    def mask_config_for_response(
        self, source: Union[DatasourceSource, str], config: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Replace every present secret with "***"."""
        return self._apply(source, config, lambda value: MASKED_VALUE)


datasource_config_encryption = DatasourceConfigEncryption()
