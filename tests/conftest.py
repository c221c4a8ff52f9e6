import pytest

from lhci_reporter.models import RunResult

TITLES = {
    "performance": "Performance",
    "accessibility": "Accessibility",
    "best-practices": "Best Practices",
    "seo": "SEO",
}


def build_run(url="https://example.com", device_type="mobile", scores=None, report_url=None):
    scores = scores or {}
    return RunResult(
        url=url,
        device_type=device_type,
        categories=[
            {"id": cid, "title": TITLES.get(cid, cid), "score": score}
            for cid, score in scores.items()
        ],
        report_url=report_url,
    )


@pytest.fixture
def make_run():
    return build_run


@pytest.fixture
def sample_results():
    """Two URLs; the first on both devices, the second on mobile only."""
    return [
        build_run("https://a.example.com", "mobile",
                  {"performance": 0.8, "accessibility": 0.95, "best-practices": 0.9, "seo": 0.9}),
        build_run("https://a.example.com", "desktop",
                  {"performance": 0.9, "accessibility": 0.95, "best-practices": 1.0, "seo": 0.7}),
        build_run("https://b.example.com", "mobile",
                  {"performance": 0.45, "accessibility": 0.6, "best-practices": 0.75}),
    ]


@pytest.fixture
def lighthouse_report():
    return {
        "requestedUrl": "https://a.example.com",
        "finalDisplayedUrl": "https://a.example.com/",
        "configSettings": {"formFactor": "desktop"},
        "categories": {
            "performance": {"id": "performance", "title": "Performance", "score": 0.91},
            "seo": {"id": "seo", "title": "SEO", "score": 0.83},
            "pwa": {"id": "pwa", "title": "PWA", "score": None},
        },
    }
