"""
Normalize ClickHouse OpenTelemetry trace rows to Tempo/OTLP JSON.

Rows follow the otel_traces table layout of the OpenTelemetry collector
ClickHouse exporter: one row per span, nested Events/Links columns flattened
into parallel arrays ("Events.Timestamp", "Events.Name", ...).

Timestamps are normalized to whole seconds; nanosecond fields are emitted as
decimal strings.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from dateutil import parser as date_parser

from app.traces.exceptions import TraceNormalizationError, TraceNotFoundError

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000
NANOS_PER_MILLISECOND = 1_000_000

SPAN_KINDS = {
    "SPAN_KIND_UNSPECIFIED": 0,
    "SPAN_KIND_INTERNAL": 1,
    "SPAN_KIND_SERVER": 2,
    "SPAN_KIND_CLIENT": 3,
    "SPAN_KIND_PRODUCER": 4,
    "SPAN_KIND_CONSUMER": 5,
}

STATUS_CODES = {
    "STATUS_CODE_UNSET": 0,
    "STATUS_CODE_OK": 1,
    "STATUS_CODE_ERROR": 2,
}

Row = Mapping[str, Any]
Attributes = Union[Mapping[str, Any], Iterable, None]


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _at(values: Optional[List[Any]], index: int) -> Any:
    if values is None or index >= len(values):
        return None
    return values[index]


class ClickHouseResponseMapper:
    """Stateless conversion of ClickHouse trace rows."""

    @staticmethod
    def parse_timestamp(value: Any) -> int:
        """
        Convert a row timestamp to epoch seconds.

        Strings are parsed as dates (naive values are taken as UTC) and
        floored to the second. Numbers are already epoch seconds.

        Raises:
            TraceNormalizationError: If the value is missing
            TypeError: If the value is an unparsable string or an unsupported type
        """
        if value is None:
            raise TraceNormalizationError("Missing timestamp value")

        if isinstance(value, str):
            try:
                parsed = date_parser.parse(value)
            except (ValueError, OverflowError) as e:
                raise TypeError(f"Invalid timestamp string format: {value}") from e
            return ClickHouseResponseMapper._datetime_to_seconds(parsed)

        if isinstance(value, datetime):
            return ClickHouseResponseMapper._datetime_to_seconds(value)

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return math.floor(value)

        raise TypeError(
            f"Invalid timestamp type: {type(value).__name__}, value: {value}"
        )

    @staticmethod
    def _datetime_to_seconds(value: datetime) -> int:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return math.floor(value.timestamp())

    @staticmethod
    def map_span_kind(kind: Any) -> int:
        return SPAN_KINDS.get(kind, 0)

    @staticmethod
    def map_status_code(code: Any) -> int:
        return STATUS_CODES.get(code, 0)

    @staticmethod
    def map_attributes(attributes: Attributes) -> List[Dict[str, Any]]:
        """Attributes as a mapping or as (key, value) pairs, stringified."""
        if not attributes:
            return []

        items = attributes.items() if isinstance(attributes, Mapping) else attributes
        return [
            {"key": str(key), "value": {"stringValue": _stringify(value)}}
            for key, value in items
        ]

    @classmethod
    def map_events(cls, row: Row) -> List[Dict[str, Any]]:
        timestamps = row.get("Events.Timestamp") or []
        names = row.get("Events.Name") or []
        attributes = row.get("Events.Attributes") or []

        events = []
        for index, timestamp in enumerate(timestamps):
            try:
                seconds = cls.parse_timestamp(timestamp)
            except (TypeError, ValueError, OverflowError):
                continue

            events.append(
                {
                    "timeUnixNano": str(seconds * NANOS_PER_SECOND),
                    "name": _stringify(_at(names, index)),
                    "attributes": cls.map_attributes(_at(attributes, index)),
                }
            )
        return events

    @classmethod
    def map_links(cls, row: Row) -> List[Dict[str, Any]]:
        trace_ids = row.get("Links.TraceId") or []
        span_ids = row.get("Links.SpanId") or []
        trace_states = row.get("Links.TraceState") or []
        attributes = row.get("Links.Attributes") or []

        return [
            {
                "traceId": trace_id,
                "spanId": _at(span_ids, index),
                "traceState": _at(trace_states, index) or "",
                "attributes": cls.map_attributes(_at(attributes, index)),
            }
            for index, trace_id in enumerate(trace_ids)
        ]

    @classmethod
    def transform_span(cls, row: Row) -> Dict[str, Any]:
        """Convert one span row to an OTLP span."""
        start_nanos = cls.parse_timestamp(row.get("Timestamp")) * NANOS_PER_SECOND
        duration_nanos = int(row.get("Duration") or 0)
        parent_span_id = row.get("ParentSpanId")

        return {
            "traceId": str(row.get("TraceId")),
            "spanId": str(row.get("SpanId")),
            "parentSpanId": str(parent_span_id) if parent_span_id else None,
            "name": _stringify(row.get("SpanName")),
            "kind": cls.map_span_kind(row.get("SpanKind")),
            "startTimeUnixNano": str(start_nanos),
            "endTimeUnixNano": str(start_nanos + duration_nanos),
            "attributes": cls.map_attributes(row.get("SpanAttributes")),
            "status": {
                "code": cls.map_status_code(row.get("StatusCode")),
                "message": row.get("StatusMessage") or "",
            },
            "events": cls.map_events(row),
            "links": cls.map_links(row),
        }

    @classmethod
    def to_tempo_search_response(cls, rows: Iterable[Row]) -> Dict[str, Any]:
        """
        Convert search rows (one per trace) to a Tempo search response.

        Raises:
            TraceNormalizationError: If a row has no usable Timestamp or MinTimestamp
            TypeError: If a row timestamp cannot be parsed
        """
        traces = []
        for row in rows:
            timestamp = row.get("Timestamp") or row.get("MinTimestamp")
            if not timestamp:
                raise TraceNormalizationError("Invalid query result: missing timestamp")

            seconds = cls.parse_timestamp(timestamp)
            duration_nanos = int(row.get("Duration") or 0)

            traces.append(
                {
                    "traceID": str(row.get("TraceId")),
                    "rootServiceName": row.get("ServiceName") or "",
                    "rootTraceName": row.get("SpanName") or "",
                    "startTimeUnixNano": str(seconds * NANOS_PER_SECOND),
                    "durationMs": duration_nanos / NANOS_PER_MILLISECOND,
                }
            )

        return {"traces": traces}

    @classmethod
    def to_tempo_trace_response(
        cls, rows: List[Row], trace_id: str
    ) -> Dict[str, Any]:
        """
        Convert the span rows of one trace to a Tempo trace response.

        Rows that fail to transform are skipped. Resource and scope are taken
        from the first row.

        Raises:
            TraceNotFoundError: If there are no rows
            TraceNormalizationError: If no row could be transformed
        """
        if not rows:
            raise TraceNotFoundError(trace_id)

        spans = []
        for row in rows:
            try:
                spans.append(cls.transform_span(row))
            except (TypeError, ValueError, OverflowError) as e:
                logger.debug(
                    f"Skipping invalid span during transform: {e} (row keys: {sorted(row.keys())})"
                )

        if not spans:
            raise TraceNormalizationError(
                f"Trace found but no valid spans could be transformed: {trace_id}"
            )

        first_row = rows[0]
        return {
            "traceID": trace_id,
            "batches": [
                {
                    "resource": {
                        "attributes": cls.map_attributes(
                            first_row.get("ResourceAttributes")
                        )
                    },
                    "scopeSpans": [
                        {
                            "scope": {
                                "name": first_row.get("ScopeName") or "",
                                "version": first_row.get("ScopeVersion") or "",
                            },
                            "spans": spans,
                        }
                    ],
                }
            ],
        }
