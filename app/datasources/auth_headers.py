import base64
import logging
from typing import Dict, Optional

from app.models import DatasourceSource

from .encryption import DatasourceConfigEncryption, datasource_config_encryption

logger = logging.getLogger(__name__)


def _authentication_block(source: DatasourceSource, config: dict) -> Optional[dict]:
    if source == DatasourceSource.CUSTOM_API:
        custom_api = config.get("customApi")
        auth = custom_api.get("authentication") if isinstance(custom_api, dict) else None
    else:
        auth = config.get("authentication")
    return auth if isinstance(auth, dict) else None


def build_auth_headers(
    datasource, encryption: Optional[DatasourceConfigEncryption] = None
) -> Dict[str, str]:
    """
    Build outbound auth headers for a datasource from its decrypted config.

    Tempo and Jaeger read config.authentication, custom APIs read
    config.customApi.authentication. Partial or unknown authentication
    yields no headers.
    """
    if not datasource.config:
        return {}

    encryption = encryption or datasource_config_encryption
    source = DatasourceSource(datasource.source)
    config = encryption.decrypt_config(source, datasource.config)

    auth = _authentication_block(source, config)
    if auth is None:
        return {}

    auth_type = auth.get("type")
    if auth_type == "basic":
        username, password = auth.get("username"), auth.get("password")
        if username and password:
            credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
            return {"Authorization": f"Basic {credentials}"}
    elif auth_type == "bearer":
        token = auth.get("token") or auth.get("value")
        if token:
            return {"Authorization": f"Bearer {token}"}
    elif auth_type == "header":
        header_name, value = auth.get("headerName"), auth.get("value")
        if header_name and value:
            return {header_name: value}

    logger.debug(
        f"No auth headers built for datasource {datasource.id}: "
        f"incomplete {auth_type or 'untyped'} authentication"
    )
    return {}
