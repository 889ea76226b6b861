from framebridge.workflows import doctor, headless_render
from framebridge.workflows.proxy_utils import ProxyConfig


def _checks(report):
    return {check["name"]: check for check in report["checks"]}


def test_doctor_reports_missing_playwright(monkeypatch):
    monkeypatch.setattr(headless_render, "async_playwright", None, raising=False)
    report = doctor.build_doctor_report(ProxyConfig())
    checks = _checks(report)

    assert report["ok"] is False
    assert checks["playwright"]["status"] == "missing"
    assert checks["bridge.js"]["status"] == "ok"
    assert "playwright_missing" in {w["code"] for w in report["environment_warnings"]}


def test_doctor_flags_bad_port_and_timeouts(monkeypatch):
    monkeypatch.setattr(headless_render, "async_playwright", object(), raising=False)
    report = doctor.build_doctor_report(ProxyConfig(port=70000, fetch_timeout=0))
    checks = _checks(report)

    assert report["ok"] is False
    assert checks["FRAMEBRIDGE_PORT"]["status"] == "missing"
    assert checks["timeouts"]["status"] == "missing"


def test_info_checks_do_not_fail_the_report(monkeypatch):
    monkeypatch.setattr(headless_render, "async_playwright", object(), raising=False)
    report = doctor.build_doctor_report(ProxyConfig(navigation_timeout=90, render_timeout=60, headless=False))
    checks = _checks(report)

    assert report["ok"] is True
    assert checks["FRAMEBRIDGE_NAVIGATION_TIMEOUT"]["level"] == "info"
    assert checks["FRAMEBRIDGE_HEADED"]["status"] == "missing"


def test_format_doctor_report():
    report = {
        "generated_at": "2024-01-01T00:00:00Z",
        "checks": [
            {"name": "playwright", "status": "missing", "level": "warn", "detail": "d", "remedy": "pip install playwright"},
            {"name": "FRAMEBRIDGE_PORT", "status": "ok", "level": "warn", "detail": None, "value": "9000"},
        ],
        "environment_warnings": [{"code": "playwright_missing", "message": "m", "remedy": "r"}],
    }
    text = doctor.format_doctor_report(report)
    assert text.startswith("Framebridge doctor\n")
    assert "- [warn] playwright: missing" in text
    assert "  remedy: pip install playwright" in text
    assert "- [warn] FRAMEBRIDGE_PORT: ok (9000)" in text
    assert "- playwright_missing: m" in text
