from __future__ import annotations

import io
import json

import pytest

from fieldops.bulk_orders.models import CanonicalWorkOrder, WorkOrderStatus
from fieldops.bulk_orders.normalizer import (
    OrderShape,
    classify_shape,
    normalize,
    normalize_many,
)
from fieldops.common.json_logger import JsonLogger


def _read_events(raw: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in raw.splitlines() if line.strip()]


def _merged_order(**completion_data) -> dict:
    return {
        "success": True,
        "data": {
            "orderNo": "WO-100",
            "date": "2024-01-01",
            "notes": "Gate code 1234",
            "location": {
                "locationName": "Acme Plant",
                "address": "1 Main St",
                "city": "Austin",
                "state": "TX",
                "zip": "78701",
            },
        },
        "scheduleInformation": {"driverId": "D7", "driverName": "Jordan Lee"},
        "completionDetails": {
            "orderNo": "WO-100",
            "success": True,
            "data": completion_data,
        },
    }


def test_empty_order_gets_total_defaults():
    order = normalize({})

    assert isinstance(order, CanonicalWorkOrder)
    assert order.order_no.startswith("TEMP-")
    assert order.order_no_generated is True
    assert order.status is WorkOrderStatus.IMPORTED
    assert order.has_images is False
    assert order.service_notes == ""
    assert order.tech_notes == ""
    assert order.notes == ""
    assert order.qc_notes == ""
    assert order.resolution_notes == ""
    assert order.signature_url is None
    assert order.tracking_url is None
    assert order.end_time is None
    assert order.driver is None
    assert order.location.name == "N/A"


def test_empty_order_record_has_every_key():
    record = normalize({}).to_record()

    assert set(record) == set(CanonicalWorkOrder.model_fields)
    assert record["status"] == "imported"


@pytest.mark.parametrize("raw", [None, [], "not-an-order", 42, {"data": "oops"}, {"data": {"orderNo": None}}])
def test_malformed_input_never_raises(raw):
    order = normalize(raw)

    assert order.order_no
    assert order.status is WorkOrderStatus.IMPORTED


def test_data_order_number_wins_over_top_level():
    order = normalize({"data": {"orderNo": "A1"}, "orderNo": "B2"})

    assert order.order_no == "A1"


def test_order_number_fallback_chain():
    assert normalize({"orderNo": "B2", "completionDetails": {"orderNo": "C3"}}).order_no == "B2"
    assert normalize({"completionDetails": {"orderNo": "C3"}}).order_no == "C3"
    assert normalize({"searchResponse": {"data": {"orderNo": "D4"}}}).order_no == "D4"
    assert normalize({"order_no": "E5"}).order_no == "E5"


def test_blank_candidates_are_skipped():
    order = normalize({"data": {"orderNo": "   "}, "orderNo": "B2"})

    assert order.order_no == "B2"


@pytest.mark.parametrize(
    ("completion_status", "expected"),
    [
        ("success", WorkOrderStatus.COMPLETED),
        ("failed", WorkOrderStatus.REJECTED),
        ("rejected", WorkOrderStatus.IMPORTED),
        ("scheduled", WorkOrderStatus.IMPORTED),
    ],
)
def test_status_derivation(completion_status, expected):
    order = normalize(_merged_order(status=completion_status))

    assert order.status is expected
    assert order.completion_status == completion_status


def test_status_without_completion_is_imported():
    order = normalize({"data": {"orderNo": "X"}})

    assert order.status is WorkOrderStatus.IMPORTED
    assert order.completion_status is None


def test_merged_order_extracts_every_field():
    order = normalize(
        _merged_order(
            status="success",
            endTime={"localTime": "2024-01-01T15:30:00+00:00"},
            tracking_url="https://track.example/abc",
            form={
                "note": "Replaced filter",
                "signature": {"url": "https://cdn.example/sig.png"},
                "images": [{"url": "https://cdn.example/1.jpg"}],
            },
        )
    )

    assert order.order_no == "WO-100"
    assert order.service_date == "2024-01-01"
    assert order.service_notes == "Gate code 1234"
    assert order.tech_notes == "Replaced filter"
    assert order.location.name == "Acme Plant"
    assert order.location.city == "Austin"
    assert order.location.zip == "78701"
    assert order.driver is not None
    assert order.driver.name == "Jordan Lee"
    assert order.driver.id == "D7"
    assert order.has_images is True
    assert order.signature_url == "https://cdn.example/sig.png"
    assert order.tracking_url == "https://track.example/abc"
    assert order.optimoroute_status == "success"
    assert order.end_time == "2024-01-01T15:30:00.000Z"
    assert order.completion_response["orderNo"] == "WO-100"
    assert order.search_response["data"]["orderNo"] == "WO-100"
    assert "completionDetails" not in order.search_response


def test_end_time_falls_back_to_service_date():
    order = normalize({"data": {"orderNo": "X", "date": "2024-02-03"}})

    assert order.end_time == "2024-02-03T23:59:59.000Z"


def test_end_time_converts_offset_to_utc():
    order = normalize(_merged_order(endTime={"localTime": "2024-01-01T10:00:00-05:00"}))

    assert order.end_time == "2024-01-01T15:00:00.000Z"


def test_end_time_skips_unparseable_completion_time():
    order = normalize(_merged_order(endTime={"localTime": "yesterday"}))

    assert order.end_time == "2024-01-01T23:59:59.000Z"


@pytest.mark.parametrize(
    "form",
    [
        {"barcode": [{"scanInfo": {"images": [{"url": "b.jpg"}]}}]},
        {"barcode_collections": [{"scanInfo": {}}, {"scanInfo": {"images": ["c.jpg"]}}]},
    ],
)
def test_images_found_in_barcode_scans(form):
    order = normalize(_merged_order(status="success", form=form))

    assert order.has_images is True


@pytest.mark.parametrize(
    "form",
    [
        {},
        {"images": []},
        {"barcode": [{"scanInfo": {"images": []}}]},
        {"barcode": "not-a-list"},
        {"barcode_collections": [None, {"scanInfo": None}]},
    ],
)
def test_images_absent(form):
    order = normalize(_merged_order(status="success", form=form))

    assert order.has_images is False


def test_completion_response_shape_is_read():
    raw = {
        "orderNo": "LEG-1",
        "completion_response": {
            "success": True,
            "orders": [{"orderNo": "LEG-1", "data": {"status": "failed", "tracking_url": "t"}}],
        },
    }

    order = normalize(raw)

    assert classify_shape(raw) is OrderShape.WITH_COMPLETION
    assert order.status is WorkOrderStatus.REJECTED
    assert order.tracking_url == "t"


def test_completion_paths_ignored_for_search_only_shape():
    raw = {"data": {"orderNo": "S-1"}, "completion_status": None}

    assert classify_shape(raw) is OrderShape.SEARCH_ONLY
    assert classify_shape({}) is OrderShape.LEGACY_BULK
    assert normalize(raw).status is WorkOrderStatus.IMPORTED


def test_string_location_and_customer_fallback():
    assert normalize({"data": {"orderNo": "L1", "location": "Depot 4"}}).location.name == "Depot 4"
    customer = normalize({"data": {"orderNo": "L2", "customer": {"name": "Globex"}}})
    assert customer.location.name == "Globex"


def test_legacy_flat_payload():
    order = normalize(
        {
            "order_no": "LEG-9",
            "service_date": "2024-03-01",
            "driver": {"id": "7", "name": "Sam"},
            "location": {"name": "Warehouse"},
            "notes": "legacy",
        }
    )

    assert order.order_no == "LEG-9"
    assert order.driver.name == "Sam"
    assert order.location.name == "Warehouse"
    assert order.notes == "legacy"
    assert order.end_time == "2024-03-01T23:59:59.000Z"


def test_numeric_order_number_is_stringified():
    assert normalize({"orderNo": 12345}).order_no == "12345"


def test_placeholder_is_logged_but_output_unchanged():
    stream = io.StringIO()
    logger = JsonLogger(run_id="test", stream=stream, log_file_path=None)

    orders = normalize_many([{}, {"orderNo": "A"}], logger=logger)

    events = _read_events(stream.getvalue())
    warnings = [e for e in events if e["message"] == "order number missing; generated placeholder"]
    summary = [e for e in events if e["message"] == "normalized batch"]
    assert len(warnings) == 1
    assert summary[0]["orders"] == 2
    assert summary[0]["placeholders"] == 1
    assert [o.order_no for o in orders][1] == "A"


def test_upstream_order_number_is_never_marked_generated():
    order = normalize({"orderNo": "TEMP-123"})

    assert order.order_no == "TEMP-123"
    assert order.order_no_generated is False


def test_generated_flag_survives_record_round_trip():
    record = normalize({}).to_record()

    assert normalize(record).order_no_generated is True
