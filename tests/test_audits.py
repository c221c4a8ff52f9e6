"""Tests for the Lighthouse and PageSpeed Insights collaborators."""
import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from lhci_reporter.audits import lighthouse
from lhci_reporter.audits.lighthouse import (
    AuditError,
    build_command,
    load_report_files,
    output_basename,
    parse_lighthouse_report,
    run_lighthouse,
)
from lhci_reporter.audits.psi import PSI_REPORT_URL, extract_categories, run_psi


# --- Lighthouse ---

def test_parse_report_skips_unscored_categories(lighthouse_report):
    result = parse_lighthouse_report(lighthouse_report)
    assert result.url == "https://a.example.com/"
    assert result.device_type == "desktop"
    assert [c.id for c in result.categories] == ["performance", "seo"]
    assert result.scores()["seo"] == 0.83


def test_parse_report_explicit_url_and_device(lighthouse_report):
    result = parse_lighthouse_report(lighthouse_report, url="https://x.com", device_type="mobile",
                                     report_url="x.html")
    assert (result.url, result.device_type, result.report_url) == ("https://x.com", "mobile", "x.html")


def test_parse_report_without_categories():
    with pytest.raises(AuditError, match="missing 'categories'"):
        parse_lighthouse_report({"requestedUrl": "https://a.com"})


def test_parse_report_rejects_out_of_range_score(lighthouse_report):
    lighthouse_report["categories"]["seo"]["score"] = 1.7
    with pytest.raises(AuditError, match="Invalid Lighthouse results"):
        parse_lighthouse_report(lighthouse_report)


def test_output_basename():
    assert output_basename("https://a.com/x?y=1", "mobile") == "https___a_com_x_y_1-mobile"


def test_build_command_per_device(tmp_path):
    mobile = build_command("https://a.com", "mobile", ["performance", "seo"], tmp_path / "out",
                           "--headless", 60, throttling_method="devtools")
    desktop = build_command("https://a.com", "desktop", ["performance"], tmp_path / "out",
                            "--headless", 60)

    assert mobile[:3] == ["npx", "lighthouse@latest", "https://a.com"]
    assert "--only-categories=performance,seo" in mobile
    assert "--throttling-method=devtools" in mobile
    assert "--screenEmulation.width=360" in mobile
    assert "--max-wait-for-load=60000" in mobile
    assert "--preset=desktop" not in mobile

    assert "--preset=desktop" in desktop
    assert "--throttling-method=provided" in desktop
    assert "--throttling.cpuSlowdownMultiplier=1" in desktop
    assert "--screenEmulation.width=1350" in desktop


def test_load_report_files(tmp_path, lighthouse_report):
    path = tmp_path / "a.report.json"
    path.write_text(json.dumps(lighthouse_report))
    (tmp_path / "a.report.html").write_text("<html></html>")

    [result] = load_report_files([path])
    assert result.report_url == str(tmp_path / "a.report.html")


def test_load_report_files_bad_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(AuditError):
        load_report_files([path])


def test_run_lighthouse_retries_then_parses(tmp_path, monkeypatch, lighthouse_report):
    attempts = []

    async def fake_run_once(command, timeout):
        attempts.append(command)
        if len(attempts) == 1:
            raise AuditError("chrome crashed")
        base = tmp_path / output_basename("https://a.com", "mobile")
        base.with_name(base.name + ".report.json").write_text(json.dumps(lighthouse_report))

    async def no_sleep(delay):
        return None

    monkeypatch.setattr(lighthouse, "_run_once", fake_run_once)
    monkeypatch.setattr(lighthouse.asyncio, "sleep", no_sleep)

    result = asyncio.run(run_lighthouse(
        "https://a.com", "mobile", ["performance", "seo"], "--headless", 30, output_dir=tmp_path,
    ))
    assert len(attempts) == 2
    assert result.url == "https://a.com"
    assert result.device_type == "mobile"
    assert result.report_url is None


def test_run_lighthouse_gives_up(tmp_path, monkeypatch):
    async def always_fail(command, timeout):
        raise AuditError("boom")

    async def no_sleep(delay):
        return None

    monkeypatch.setattr(lighthouse, "_run_once", always_fail)
    monkeypatch.setattr(lighthouse.asyncio, "sleep", no_sleep)

    with pytest.raises(AuditError, match="Failed to run Lighthouse"):
        asyncio.run(run_lighthouse("https://a.com", "desktop", ["seo"], "", 30,
                                   output_dir=tmp_path, max_retries=1))


# --- PageSpeed Insights ---

PSI_RESPONSE = {
    "lighthouseResult": {
        "categories": {
            "seo": {"title": "SEO", "score": 0.9},
            "performance": {"score": 0.42},
            "accessibility": {"title": "Accessibility", "score": None},
        },
    },
}


def test_extract_categories_fixed_order_and_default_titles():
    categories = extract_categories(PSI_RESPONSE["lighthouseResult"])
    assert [(c.id, c.title) for c in categories] == [("performance", "Performance"), ("seo", "SEO")]


def test_run_psi(tmp_path):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=PSI_RESPONSE)

    result = asyncio.run(run_psi(
        "https://a.com", "desktop", ["performance", "seo"], "secret",
        output_dir=tmp_path, transport=httpx.MockTransport(handler),
    ))

    query = parse_qs(seen[0].url.query.decode())
    assert query["category"] == ["performance", "seo"]
    assert query["strategy"] == ["desktop"]
    assert result.report_url == PSI_REPORT_URL + "https%3A%2F%2Fa.com"
    assert result.scores() == {"performance": 0.42, "seo": 0.9}
    assert (tmp_path / "psi-https___a_com-desktop.json").exists()


def test_run_psi_retries_server_errors():
    responses = iter([httpx.Response(503, text="busy"), httpx.Response(200, json=PSI_RESPONSE)])

    result = asyncio.run(run_psi(
        "https://a.com", "mobile", ["seo"], "secret", output_dir=None,
        transport=httpx.MockTransport(lambda request: next(responses)), retry_delay=0,
    ))
    assert result.scores()["seo"] == 0.9


def test_run_psi_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, text="bad key")

    with pytest.raises(AuditError, match="400"):
        asyncio.run(run_psi("https://a.com", "mobile", ["seo"], "bad", output_dir=None,
                            transport=httpx.MockTransport(handler), retry_delay=0))
    assert len(calls) == 1


def test_run_psi_non_json_body_is_an_audit_error():
    def handler(request):
        return httpx.Response(200, text="<html>captive portal</html>")

    with pytest.raises(AuditError, match="non-JSON"):
        asyncio.run(run_psi("https://a.com", "mobile", ["seo"], "secret", output_dir=None,
                            transport=httpx.MockTransport(handler), retry_delay=0))


def test_run_psi_out_of_range_score_is_an_audit_error():
    body = {"lighthouseResult": {"categories": {"seo": {"title": "SEO", "score": 9}}}}

    with pytest.raises(AuditError, match="Invalid PSI response"):
        asyncio.run(run_psi("https://a.com", "mobile", ["seo"], "secret", output_dir=None,
                            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
                            retry_delay=0))
