"""
Unit tests for ClickHouse trace row normalization.
"""

from datetime import datetime, timezone

import pytest

from app.traces.clickhouse.response_mapper import ClickHouseResponseMapper
from app.traces.exceptions import TraceNormalizationError, TraceNotFoundError

JAN_1_2024 = 1704067200
JAN_1_2024_NANOS = str(JAN_1_2024 * 1_000_000_000)


def span_row(**overrides):
    row = {
        "Timestamp": "2024-01-01T00:00:00Z",
        "TraceId": "4bf92f3577b34da6a3ce929d0e0e4736",
        "SpanId": "00f067aa0ba902b7",
        "ParentSpanId": "",
        "SpanName": "GET /orders",
        "SpanKind": "SPAN_KIND_SERVER",
        "ServiceName": "orders",
        "ResourceAttributes": {"service.name": "orders"},
        "ScopeName": "opentelemetry.instrumentation.fastapi",
        "ScopeVersion": "0.45b0",
        "SpanAttributes": {"http.method": "GET", "http.status_code": 200},
        "Duration": 1_500_000,
        "StatusCode": "STATUS_CODE_OK",
        "StatusMessage": "",
        "Events.Timestamp": [],
        "Events.Name": [],
        "Events.Attributes": [],
        "Links.TraceId": [],
        "Links.SpanId": [],
        "Links.TraceState": [],
        "Links.Attributes": [],
    }
    row.update(overrides)
    return row


class TestSearchResponse:
    """Tests for to_tempo_search_response."""

    def test_maps_row(self):
        rows = [
            {
                "TraceId": "abc",
                "ServiceName": "orders",
                "SpanName": "GET /orders",
                "Timestamp": "2024-01-01T00:00:00Z",
                "Duration": 1_000_000,
            }
        ]

        response = ClickHouseResponseMapper.to_tempo_search_response(rows)

        assert response == {
            "traces": [
                {
                    "traceID": "abc",
                    "rootServiceName": "orders",
                    "rootTraceName": "GET /orders",
                    "startTimeUnixNano": JAN_1_2024_NANOS,
                    "durationMs": 1,
                }
            ]
        }

    def test_min_timestamp_fallback(self):
        rows = [{"TraceId": "abc", "MinTimestamp": JAN_1_2024, "Duration": 2_500_000}]

        trace = ClickHouseResponseMapper.to_tempo_search_response(rows)["traces"][0]

        assert trace["startTimeUnixNano"] == JAN_1_2024_NANOS
        assert trace["durationMs"] == 2.5
        assert trace["rootServiceName"] == ""
        assert trace["rootTraceName"] == ""

    def test_empty_timestamp_falls_back_to_min_timestamp(self):
        rows = [{"TraceId": "abc", "Timestamp": "", "MinTimestamp": JAN_1_2024}]
        trace = ClickHouseResponseMapper.to_tempo_search_response(rows)["traces"][0]
        assert trace["startTimeUnixNano"] == JAN_1_2024_NANOS

    def test_empty_timestamps(self):
        with pytest.raises(TraceNormalizationError, match="missing timestamp"):
            ClickHouseResponseMapper.to_tempo_search_response(
                [{"TraceId": "abc", "Timestamp": "", "MinTimestamp": None}]
            )

    def test_sub_second_timestamp_floored(self):
        rows = [{"TraceId": "abc", "Timestamp": "2024-01-01 00:00:00.987654"}]
        trace = ClickHouseResponseMapper.to_tempo_search_response(rows)["traces"][0]
        assert trace["startTimeUnixNano"] == JAN_1_2024_NANOS
        assert trace["durationMs"] == 0

    def test_missing_timestamp(self):
        with pytest.raises(TraceNormalizationError, match="Invalid query result: missing timestamp"):
            ClickHouseResponseMapper.to_tempo_search_response([{"TraceId": "abc"}])

    def test_invalid_timestamp_string(self):
        with pytest.raises(TypeError):
            ClickHouseResponseMapper.to_tempo_search_response(
                [{"TraceId": "abc", "Timestamp": "not a date"}]
            )

    def test_empty_rows(self):
        assert ClickHouseResponseMapper.to_tempo_search_response([]) == {"traces": []}


class TestTraceResponse:
    """Tests for to_tempo_trace_response."""

    def test_maps_trace(self):
        rows = [
            span_row(),
            span_row(SpanId="b7ad6b7169203331", ParentSpanId="00f067aa0ba902b7", SpanKind="SPAN_KIND_CLIENT"),
        ]

        trace = ClickHouseResponseMapper.to_tempo_trace_response(rows, "4bf92f3577b34da6a3ce929d0e0e4736")

        assert trace["traceID"] == "4bf92f3577b34da6a3ce929d0e0e4736"
        batch = trace["batches"][0]
        assert batch["resource"]["attributes"] == [
            {"key": "service.name", "value": {"stringValue": "orders"}}
        ]
        scope_spans = batch["scopeSpans"][0]
        assert scope_spans["scope"] == {
            "name": "opentelemetry.instrumentation.fastapi",
            "version": "0.45b0",
        }
        root, child = scope_spans["spans"]
        assert root["parentSpanId"] is None
        assert root["kind"] == 2
        assert child["parentSpanId"] == "00f067aa0ba902b7"
        assert child["kind"] == 3

    def test_span_fields(self):
        span = ClickHouseResponseMapper.transform_span(span_row())

        assert span["traceId"] == "4bf92f3577b34da6a3ce929d0e0e4736"
        assert span["spanId"] == "00f067aa0ba902b7"
        assert span["name"] == "GET /orders"
        assert span["startTimeUnixNano"] == JAN_1_2024_NANOS
        assert span["endTimeUnixNano"] == str(JAN_1_2024 * 1_000_000_000 + 1_500_000)
        assert span["status"] == {"code": 1, "message": ""}
        assert {"key": "http.status_code", "value": {"stringValue": "200"}} in span["attributes"]
        assert span["events"] == []
        assert span["links"] == []

    def test_empty_rows(self):
        with pytest.raises(TraceNotFoundError, match="Trace not found: abc"):
            ClickHouseResponseMapper.to_tempo_trace_response([], "abc")

    def test_invalid_row_skipped(self):
        rows = [span_row(Timestamp="garbage", SpanId="bad"), span_row()]

        trace = ClickHouseResponseMapper.to_tempo_trace_response(rows, "abc")

        spans = trace["batches"][0]["scopeSpans"][0]["spans"]
        assert len(spans) == 1
        assert spans[0]["spanId"] == "00f067aa0ba902b7"

    def test_all_rows_invalid(self):
        rows = [span_row(Timestamp="garbage"), span_row(Timestamp=None)]

        with pytest.raises(
            TraceNormalizationError,
            match="Trace found but no valid spans could be transformed: abc",
        ):
            ClickHouseResponseMapper.to_tempo_trace_response(rows, "abc")

    def test_resource_and_scope_defaults(self):
        row = span_row()
        del row["ResourceAttributes"]
        row["ScopeName"] = None
        del row["ScopeVersion"]

        batch = ClickHouseResponseMapper.to_tempo_trace_response([row], "abc")["batches"][0]

        assert batch["resource"]["attributes"] == []
        assert batch["scopeSpans"][0]["scope"] == {"name": "", "version": ""}


class TestEventsAndLinks:
    """Tests for map_events and map_links."""

    def test_events_zipped_by_index(self):
        row = span_row(
            **{
                "Events.Timestamp": ["2024-01-01T00:00:01Z", "2024-01-01T00:00:02Z"],
                "Events.Name": ["cache.miss", "db.query"],
                "Events.Attributes": [{"key": "orders:1"}, {}],
            }
        )

        events = ClickHouseResponseMapper.map_events(row)

        assert events == [
            {
                "timeUnixNano": str((JAN_1_2024 + 1) * 1_000_000_000),
                "name": "cache.miss",
                "attributes": [{"key": "key", "value": {"stringValue": "orders:1"}}],
            },
            {
                "timeUnixNano": str((JAN_1_2024 + 2) * 1_000_000_000),
                "name": "db.query",
                "attributes": [],
            },
        ]

    def test_bad_event_timestamp_dropped_alone(self):
        row = span_row(
            **{
                "Events.Timestamp": ["nope", "2024-01-01T00:00:00Z"],
                "Events.Name": ["broken", "ok"],
                "Events.Attributes": [{}, {}],
            }
        )

        events = ClickHouseResponseMapper.map_events(row)

        assert [event["name"] for event in events] == ["ok"]

    def test_event_arrays_of_different_length(self):
        row = {"Events.Timestamp": [JAN_1_2024], "Events.Name": [], "Events.Attributes": None}
        events = ClickHouseResponseMapper.map_events(row)
        assert events == [{"timeUnixNano": JAN_1_2024_NANOS, "name": "", "attributes": []}]

    def test_links(self):
        row = span_row(
            **{
                "Links.TraceId": ["t1", "t2"],
                "Links.SpanId": ["s1", "s2"],
                "Links.TraceState": ["rojo=00f067aa0ba902b7", ""],
                "Links.Attributes": [{"link.kind": "follows_from"}, {}],
            }
        )

        links = ClickHouseResponseMapper.map_links(row)

        assert links == [
            {
                "traceId": "t1",
                "spanId": "s1",
                "traceState": "rojo=00f067aa0ba902b7",
                "attributes": [{"key": "link.kind", "value": {"stringValue": "follows_from"}}],
            },
            {"traceId": "t2", "spanId": "s2", "traceState": "", "attributes": []},
        ]

    def test_missing_columns(self):
        assert ClickHouseResponseMapper.map_events({}) == []
        assert ClickHouseResponseMapper.map_links({}) == []


class TestLookupsAndParsing:
    """Tests for enum lookups, attribute mapping and timestamp parsing."""

    @pytest.mark.parametrize(
        "kind, expected",
        [
            ("SPAN_KIND_UNSPECIFIED", 0),
            ("SPAN_KIND_INTERNAL", 1),
            ("SPAN_KIND_SERVER", 2),
            ("SPAN_KIND_CLIENT", 3),
            ("SPAN_KIND_PRODUCER", 4),
            ("SPAN_KIND_CONSUMER", 5),
            ("Server", 0),
            (None, 0),
        ],
    )
    def test_span_kind(self, kind, expected):
        assert ClickHouseResponseMapper.map_span_kind(kind) == expected

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("STATUS_CODE_UNSET", 0),
            ("STATUS_CODE_OK", 1),
            ("STATUS_CODE_ERROR", 2),
            ("Error", 0),
            (None, 0),
        ],
    )
    def test_status_code(self, code, expected):
        assert ClickHouseResponseMapper.map_status_code(code) == expected

    def test_attributes_from_pairs(self):
        attributes = [("retry", True), ("count", 3)]
        assert ClickHouseResponseMapper.map_attributes(attributes) == [
            {"key": "retry", "value": {"stringValue": "true"}},
            {"key": "count", "value": {"stringValue": "3"}},
        ]

    def test_attributes_empty(self):
        assert ClickHouseResponseMapper.map_attributes(None) == []
        assert ClickHouseResponseMapper.map_attributes({}) == []

    def test_parse_timestamp_variants(self):
        assert ClickHouseResponseMapper.parse_timestamp(JAN_1_2024) == JAN_1_2024
        assert ClickHouseResponseMapper.parse_timestamp(JAN_1_2024 + 0.75) == JAN_1_2024
        assert ClickHouseResponseMapper.parse_timestamp("2024-01-01 00:00:00") == JAN_1_2024
        assert ClickHouseResponseMapper.parse_timestamp("2024-01-01T01:00:00+01:00") == JAN_1_2024
        assert ClickHouseResponseMapper.parse_timestamp(datetime(2024, 1, 1)) == JAN_1_2024
        assert (
            ClickHouseResponseMapper.parse_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc))
            == JAN_1_2024
        )

    def test_parse_timestamp_rejects_other_types(self):
        with pytest.raises(TypeError):
            ClickHouseResponseMapper.parse_timestamp(True)
        with pytest.raises(TypeError):
            ClickHouseResponseMapper.parse_timestamp(["2024-01-01"])
        with pytest.raises(TraceNormalizationError):
            ClickHouseResponseMapper.parse_timestamp(None)
