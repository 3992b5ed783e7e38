"""
Exceptions raised by the datasources domain.

Routers translate these into HTTP responses:
- DatasourceValidationError -> 400
- DatasourceNotFoundError -> 404
- DatasourceConfigIntegrityError -> 500
"""


class DatasourceError(Exception):
    """Base class for datasource errors."""


class DatasourceValidationError(DatasourceError, ValueError):
    """A datasource url/config combination was rejected."""


class DatasourceConfigIntegrityError(DatasourceError):
    """A stored config is not in the shape its source requires."""


class DatasourceNotFoundError(DatasourceError):
    """No datasource with the given id exists in the organisation."""

    def __init__(self, datasource_id: str):
        self.datasource_id = datasource_id
        super().__init__(f"Datasource with ID {datasource_id} not found")
