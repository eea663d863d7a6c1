import json
import logging

from storefront.shared.logging_config import JSONFormatter, mask_headers


def make_record(**extra):
    record = logging.LogRecord("storefront.payments", logging.INFO, __file__, 10, "Payment recorded", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_known_extras():
    line = JSONFormatter("storefront").format(make_record(order_id="o-1", session_id="cs_1", unrelated="x"))

    entry = json.loads(line)
    assert entry["service"] == "storefront"
    assert entry["level"] == "INFO"
    assert entry["message"] == "Payment recorded"
    assert entry["order_id"] == "o-1"
    assert entry["session_id"] == "cs_1"
    assert "unrelated" not in entry


def test_mask_headers_hides_credentials():
    masked = mask_headers({
        "Authorization": "Bearer abc",
        "Stripe-Signature": "t=1,v1=deadbeef",
        "Content-Type": "application/json",
    })

    assert masked["Authorization"] == "***"
    assert masked["Stripe-Signature"] == "***"
    assert masked["Content-Type"] == "application/json"
