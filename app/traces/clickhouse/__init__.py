from .response_mapper import ClickHouseResponseMapper

__all__ = ["ClickHouseResponseMapper"]
