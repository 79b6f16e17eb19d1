import logging

import pytest

from firewatch.errors import RegistryUnavailableError
from firewatch.registry import StatusCodeRegistry, classify_name
from firewatch.schemas import Severity


@pytest.mark.parametrize("name, expected", [
    ("화재알람", Severity.FIRE),
    ("통신단선", Severity.FAULT),
    ("감지기고장", Severity.FAULT),
    ("전원오류", Severity.FAULT),
    ("화재해소", Severity.RECOVERED),
    ("단선복구", Severity.RECOVERED),
    ("정상", Severity.RECOVERED),
    ("배터리 교체", Severity.NORMAL),
    ("", Severity.NORMAL),
    (None, Severity.NORMAL),
])
def test_classify_name_keywords(name, expected):
    assert classify_name(name) == expected


def test_classify_name_conflicting_classes_use_priority(caplog):
    with caplog.at_level(logging.WARNING):
        assert classify_name("화재 감지기 오류") == Severity.FIRE
    assert "several classes" in caplog.text


async def test_resolve_unknown_code_returns_code(codes):
    registry = StatusCodeRegistry(codes)
    await registry.load()

    assert registry.resolve("10") == "화재알람"
    assert registry.resolve("ZZ9") == "ZZ9"
    assert registry.resolve(None) is None


async def test_explicit_severity_wins_over_keywords(codes):
    codes.put("20", "화재감지기 점검", severity="normal")
    registry = StatusCodeRegistry(codes)
    await registry.load()

    result = registry.classify_code("20")
    assert result.severity == Severity.NORMAL
    assert not result.degraded


async def test_keyword_fallback_is_flagged_degraded(codes):
    registry = StatusCodeRegistry(codes)
    await registry.load()

    fallback = registry.classify_code("35")
    assert fallback.severity == Severity.FAULT
    assert fallback.degraded

    unknown = registry.classify_code("99")
    assert unknown.name == "99"
    assert unknown.severity == Severity.NORMAL
    assert unknown.degraded


async def test_load_failure_keeps_previous_map(codes, broken_codes):
    registry = StatusCodeRegistry(codes)
    await registry.load()

    registry.repository = broken_codes
    with pytest.raises(RegistryUnavailableError):
        await registry.load()

    assert registry.resolve("10") == "화재알람"


async def test_load_or_degrade_falls_back_to_raw_codes(broken_codes, caplog):
    registry = StatusCodeRegistry(broken_codes)

    with caplog.at_level(logging.WARNING):
        assert await registry.load_or_degrade() is False

    assert not registry.loaded
    assert registry.resolve("10") == "10"
    assert "falling back to raw status codes" in caplog.text
