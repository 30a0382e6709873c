"""
Tests for configuration validation and structured logging.
"""
import json
import logging

import pytest

from partyplanner.core.config import Settings, validate_config
from partyplanner.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, request_id_ctx_var
from partyplanner.core.middleware.request_id import event_id_from_path
from partyplanner.models.entitlement import EntitlementDefaults, GUESTS_PER_EVENT


def test_validate_config_strict_raises():
    cfg = Settings(DATABASE_URL=None, FREE_TIER_MAX_GUESTS=-1)
    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=cfg)
    assert "DATABASE_URL" in str(exc.value)
    assert "FREE_TIER_MAX_GUESTS" in str(exc.value)


def test_validate_config_warns(caplog):
    cfg = Settings(DATABASE_URL=None)
    logger = logging.getLogger("partyplanner.test.config")
    with caplog.at_level(logging.WARNING, logger="partyplanner.test.config"):
        assert validate_config(strict=False, settings_obj=cfg, logger=logger) is True
    assert "missing DATABASE_URL" in caplog.text


def test_defaults_from_settings():
    cfg = Settings(FREE_TIER_MAX_GUESTS=25)
    defaults = EntitlementDefaults.from_settings(cfg)
    assert defaults.limit(GUESTS_PER_EVENT).amount == 25
    assert not any(defaults.features.values())


def _record(**extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "partyplanner", "levelname": "INFO", "msg": "[quota] creation consumed"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra():
    token = request_id_ctx_var.set("rid-1")
    try:
        record = _record(request_id="rid-1", user_id="u-1", subscription_id=7)
        payload = json.loads(JsonFormatter().format(record))
    finally:
        request_id_ctx_var.reset(token)
    assert payload["message"] == "[quota] creation consumed"
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "u-1"
    assert payload["subscription_id"] == 7


def test_pretty_formatter():
    line = PrettyFormatter().format(_record(request_id="abc", event_id="e-1"))
    assert "[rid=abc]" in line
    assert "event_id=e-1" in line


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(1500) == ">=1000ms"


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/api/events/evt-1", "evt-1"),
        ("/api/events/evt-1/collaborators/3/roles", "evt-1"),
        ("/api/events/", None),
        ("/api/events", None),
        ("/api/plans/pro", None),
    ],
)
def test_event_id_from_path(path, expected):
    assert event_id_from_path(path) == expected
