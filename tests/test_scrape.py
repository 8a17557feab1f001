"""
Tests for the end-to-end scrape run: validation before any browser work,
session lifecycle and result output.
"""

import asyncio
import io
import json
import os
import signal
import sys

import pytest

from fakes import FakePage, FakeSite, page_html
from sitepanda.cancellation import CancellationToken
from sitepanda.crawler import TerminalStatus
from sitepanda.errors import ConfigError, PatternError, ProvisionError, SessionInitError
from sitepanda.provisioning import Provisioner
from sitepanda.run_config import ScrapeConfig
from sitepanda.scrape import load_url_file, run_async

BASE = "http://site.test"


class RecordingProvisioner(Provisioner):
    def __init__(self, fail=None):
        self.prepared = []
        self.cleanups = 0
        self.fail = fail

    def prepare(self, browser):
        self.prepared.append(browser)
        if self.fail is not None:
            raise self.fail
        return None, self._cleanup

    def _cleanup(self):
        self.cleanups += 1


class FakeSession:
    def __init__(self, page):
        self.page = page
        self.cleanups = 0
        self.dumps = []

    async def cleanup(self):
        self.cleanups += 1

    def dump_diagnostics(self, reason):
        self.dumps.append(reason)


class SessionFactory:
    def __init__(self, page=None, fail=None):
        self.session = FakeSession(page)
        self.fail = fail
        self.calls = []

    async def __call__(self, config, executable_path):
        self.calls.append((config.browser, executable_path))
        if self.fail is not None:
            raise self.fail
        return self.session


def _site():
    return FakeSite({
        f"{BASE}/": page_html("Home", "/docs"),
        f"{BASE}/docs": page_html("Docs", body="Read the docs."),
    })


def _run(config, provisioner, factory, token=None, stream=None):
    return asyncio.run(run_async(
        config, provisioner=provisioner, session_factory=factory,
        token=token, handle_signals=False, stream=stream,
    ))


class TestScrapeRun:

    def test_completes_and_writes_stdout(self):
        out = io.StringIO()
        provisioner = RecordingProvisioner()
        factory = SessionFactory(FakePage(_site()))
        outcome = _run(ScrapeConfig(start_url=f"{BASE}/"), provisioner, factory, stream=out)

        assert outcome.status is TerminalStatus.COMPLETED
        assert outcome.records_written == 2
        assert "<title>Home</title>" in out.getvalue()
        assert "<url>http://site.test/docs</url>" in out.getvalue()
        assert provisioner.prepared == ["chromium"]
        assert provisioner.cleanups == 1
        assert factory.session.cleanups == 1
        assert factory.session.dumps == []

    def test_json_outfile(self, tmp_path):
        outfile = tmp_path / "out.json"
        config = ScrapeConfig(start_url=f"{BASE}/", outfile=str(outfile), output_format="json")
        _run(config, RecordingProvisioner(), SessionFactory(FakePage(_site())))
        data = json.loads(outfile.read_text(encoding="utf-8"))
        assert [d["title"] for d in data] == ["Home", "Docs"]
        assert "Read the docs." in data[1]["content"]

    def test_url_file(self, tmp_path):
        url_file = tmp_path / "urls.txt"
        url_file.write_text(f"# docs only\n{BASE}/docs\n\n{BASE}/docs/\n", encoding="utf-8")
        site = _site()
        out = io.StringIO()
        outcome = _run(ScrapeConfig(url_file=str(url_file)), RecordingProvisioner(),
                       SessionFactory(FakePage(site)), stream=out)
        assert outcome.records_written == 1
        assert site.requests == [f"{BASE}/docs"]

    def test_cancelled_before_start_still_writes(self):
        token = CancellationToken()
        token.cancel("test")
        out = io.StringIO()
        factory = SessionFactory(FakePage(_site()))
        outcome = _run(ScrapeConfig(start_url=f"{BASE}/", output_format="json"),
                       RecordingProvisioner(), factory, token=token, stream=out)
        assert outcome.status is TerminalStatus.CANCELLED
        assert out.getvalue() == "[]\n"
        assert factory.session.cleanups == 1

    def test_critical_error_dumps_diagnostics(self):
        page = FakePage(_site())
        page.closed = True
        factory = SessionFactory(page)
        outcome = _run(ScrapeConfig(start_url=f"{BASE}/"), RecordingProvisioner(), factory,
                       stream=io.StringIO())
        assert outcome.status is TerminalStatus.FAILED
        assert len(factory.session.dumps) == 1
        assert factory.session.cleanups == 1


class TestFailuresBeforeBrowser:

    def test_invalid_config_skips_provisioning(self):
        provisioner = RecordingProvisioner()
        factory = SessionFactory()
        with pytest.raises(ConfigError):
            _run(ScrapeConfig(start_url=f"{BASE}/", url_file="urls.txt"), provisioner, factory)
        assert provisioner.prepared == []
        assert factory.calls == []

    def test_bad_pattern_skips_provisioning(self):
        provisioner = RecordingProvisioner()
        with pytest.raises(PatternError):
            _run(ScrapeConfig(start_url=f"{BASE}/", match_patterns=["/docs/[a-"]),
                 provisioner, SessionFactory())
        assert provisioner.prepared == []

    def test_provision_failure(self):
        factory = SessionFactory()
        with pytest.raises(ProvisionError):
            _run(ScrapeConfig(start_url=f"{BASE}/"), RecordingProvisioner(ProvisionError("missing")), factory)
        assert factory.calls == []

    def test_session_failure_runs_provision_cleanup(self):
        provisioner = RecordingProvisioner()
        factory = SessionFactory(fail=SessionInitError("no browser"))
        with pytest.raises(SessionInitError):
            _run(ScrapeConfig(start_url=f"{BASE}/"), provisioner, factory)
        assert provisioner.cleanups == 1


class TestLoadUrlFile:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read URL file"):
            load_url_file(str(tmp_path / "missing.txt"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "urls.txt"
        path.write_text("\n# nothing\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="no URLs"):
            load_url_file(str(path))


class SignallingSession(FakeSession):
    """Receives SIGTERM and SIGINT halfway through its own teardown."""

    def __init__(self, page):
        super().__init__(page)
        self.events = []

    async def cleanup(self):
        self.events.append("page.close")
        os.kill(os.getpid(), signal.SIGTERM)
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(0.2)
        self.events.append("process.terminate")
        self.cleanups += 1


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals required")
class TestSignalsDuringTeardown:

    def test_repeated_signals_do_not_interrupt_cleanup(self):
        provisioner = RecordingProvisioner()
        factory = SessionFactory()
        factory.session = SignallingSession(FakePage(_site()))
        token = CancellationToken()

        outcome = asyncio.run(run_async(
            ScrapeConfig(start_url=f"{BASE}/"), provisioner=provisioner,
            session_factory=factory, token=token, handle_signals=True, stream=io.StringIO(),
        ))

        assert outcome.status is TerminalStatus.COMPLETED
        assert factory.session.events == ["page.close", "process.terminate"]
        assert factory.session.cleanups == 1
        assert provisioner.cleanups == 1
        assert token.cancelled
