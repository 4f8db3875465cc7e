"""
End-to-end runs through the orchestrator with faked HTTP.
"""

import dataclasses
import json

import pytest
import requests

import cache_warmer.main as main_module
from conftest import FakeSession, SleepRecorder, make_purger, make_response, purged_urls, sitemap_index, urlset
from cache_warmer.config import DomainTarget, WarmerConfig
from cache_warmer.run_logger import RunLogger
from cache_warmer.scheduler import BatchScheduler
from cache_warmer.sitemap_fetcher import SitemapFetcher

SINK = "https://script.google.com/macros/s/abc/exec"

SITEMAPS = {
    "https://example.test/sitemap_index.xml": make_response(text=sitemap_index("https://example.test/post-sitemap.xml")),
    "https://example.test/post-sitemap.xml": make_response(text=urlset(
        "https://example.test/a", "https://example.test/b", "https://other.test/c",
    )),
    "https://second.test/sitemap_index.xml": make_response(text=urlset("https://second.test/x")),
}

PAGES = {
    "https://example.test/a": make_response(200, headers={"cf-cache-status": "MISS", "cf-ray": "r1-SIN"}),
    "https://example.test/b": make_response(200, headers={"cf-cache-status": "HIT", "cf-ray": "r2-SIN"}),
    "https://second.test/x": make_response(200, headers={"cf-cache-status": "HIT"}),
}


@pytest.fixture
def sitemap_session(monkeypatch):
    session = FakeSession(SITEMAPS)

    def fake_fetcher(transport, label=""):
        return SitemapFetcher(transport, session=session, label=label)

    monkeypatch.setattr(main_module, "SitemapFetcher", fake_fetcher)
    return session


def _config(*targets):
    return WarmerConfig(targets=tuple(targets), apps_script_url=SINK)


def _run(config, purger=None, sink=None, **kwargs):
    sleeper = SleepRecorder()
    sink = sink or FakeSession(post_reply={"ok": True})
    run_logger = RunLogger(sink_url=config.apps_script_url, session=sink)
    scheduler = BatchScheduler(purger=purger, session=FakeSession(PAGES), sleep=sleeper)
    main_module.run(config, run_logger=run_logger, scheduler=scheduler, **kwargs)
    return run_logger, sink, sleeper


def test_end_to_end_single_domain(sitemap_session):
    purger = make_purger()
    config = _config(DomainTarget(region="id", base_url="https://example.test"))

    run_logger, sink, sleeper = _run(config, purger=purger)

    urls = [row.url for row in run_logger.rows if row.url]
    assert urls == ["https://example.test/a", "https://example.test/b"]
    # two batches of one, one delay between them
    assert sleeper.calls == [2.0]
    # MISS purges, HIT does not
    assert purged_urls(purger) == ["https://example.test/a"]

    summary = run_logger.rows[0]
    assert summary.url == ""
    assert summary.message == "Found 2 URLs for id"

    assert len(sink.post_calls) == 1
    body = sink.post_calls[0]["json"]
    assert len(body["rows"]) == 3
    run_ids = {row[body["headers"].index("run_id")] for row in body["rows"]}
    finished = {row[body["headers"].index("finished_at")] for row in body["rows"]}
    assert run_ids == {run_logger.run_id}
    assert finished == {run_logger.finished_at} and None not in finished


def test_single_flush_over_many_domains(sitemap_session):
    config = _config(
        DomainTarget(region="id", base_url="https://example.test"),
        DomainTarget(region="sg", base_url="https://second.test"),
    )
    run_logger, sink, _ = _run(config)

    # U + M rows: 3 warmed URLs plus one discovery summary per domain
    assert len(sink.post_calls) == 1
    assert len(sink.post_calls[0]["json"]["rows"]) == 5
    assert {row.region for row in run_logger.rows} == {"id", "sg"}


def test_failing_domain_still_flushes_once(sitemap_session, monkeypatch):
    real_discover = main_module.discover_urls

    def flaky_discover(target, fetcher, parser=None):
        if target.region == "sg":
            raise RuntimeError("discovery exploded")
        return real_discover(target, fetcher, parser)

    monkeypatch.setattr(main_module, "discover_urls", flaky_discover)
    config = _config(
        DomainTarget(region="id", base_url="https://example.test"),
        DomainTarget(region="sg", base_url="https://second.test"),
    )
    run_logger, sink, _ = _run(config)

    assert len(sink.post_calls) == 1
    failed = [row for row in run_logger.rows if row.region == "sg"]
    assert len(failed) == 1 and failed[0].error == 1
    assert "discovery exploded" in failed[0].message
    assert len([row for row in run_logger.rows if row.url]) == 2


def test_dry_run_discovers_only(sitemap_session):
    purger = make_purger()
    config = _config(DomainTarget(region="id", base_url="https://example.test"))
    run_logger, _, _ = _run(config, purger=purger, dry_run=True)
    assert [row.message for row in run_logger.rows] == ["Found 2 URLs for id"]
    assert purged_urls(purger) == []


def test_region_filter_and_disabled_targets(sitemap_session):
    config = _config(
        DomainTarget(region="id", base_url="https://example.test"),
        DomainTarget(region="sg", base_url="https://second.test"),
        DomainTarget(region="my", base_url="https://third.test", enabled=False),
    )
    run_logger, _, _ = _run(config, regions=["sg", "my"])
    assert {row.region for row in run_logger.rows} == {"sg"}


def test_purge_totals_reach_the_run_summary(sitemap_session, caplog):
    purger = make_purger(reply={"success": False, "errors": [{"code": 1234}]})
    config = _config(DomainTarget(region="id", base_url="https://example.test"))
    with caplog.at_level("INFO"):
        _run(config, purger=purger)
    assert "Cloudflare purges: 0 succeeded, 1 failed" in caplog.text


def test_warm_requests_share_one_pooled_session(sitemap_session, monkeypatch):
    built = []
    real_scheduler = main_module.BatchScheduler

    def capture(**kwargs):
        scheduler = real_scheduler(**kwargs)
        built.append(scheduler)
        return scheduler

    monkeypatch.setattr(main_module, "BatchScheduler", capture)
    config = WarmerConfig(targets=(DomainTarget(region="id", base_url="https://example.test"),), batch_size=8)
    main_module.run(config, dry_run=True, run_logger=RunLogger(session=FakeSession()))

    session = built[0].session
    assert isinstance(session, requests.Session)
    assert session.get_adapter("https://example.test/")._pool_maxsize >= 10

    wide = main_module.create_warm_session(dataclasses.replace(config, max_concurrent_domains=3))
    assert wide.get_adapter("https://example.test/")._pool_maxsize == 24


# =============================================================================
# CLI
# =============================================================================

def test_main_exits_1_without_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main_module.main(["--config", str(tmp_path / "missing.json")]) == 1


def test_main_dry_run_exits_0(tmp_path, monkeypatch, sitemap_session):
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "targets": [{"region": "id", "base_url": "https://example.test"}],
    }))
    assert main_module.main(["--config", str(config_path), "--dry-run", "--output-dir", str(tmp_path / "out")]) == 0
    assert sitemap_session.get_calls[0] == "https://example.test/sitemap_index.xml"
    assert len(list((tmp_path / "out").glob("*_WITA.csv"))) == 1


def test_main_rejects_bad_batch_size(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"targets": [{"region": "id", "base_url": "https://example.test"}]}))
    assert main_module.main(["--config", str(config_path), "--batch-size", "0"]) == 1
