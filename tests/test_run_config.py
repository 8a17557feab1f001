"""
Tests for ScrapeConfig defaults, CLI mapping and validation.
"""

import argparse

import pytest

from sitepanda.errors import ConfigError
from sitepanda.run_config import BROWSER_ENV_VAR, ScrapeConfig, default_browser


def _namespace(**kwargs):
    values = dict(
        url="https://example.com/", url_file=None, browser="chromium", verbose_browser=False,
        match=[], follow_match=[], limit=0, content_selector=None,
        wait_for_network_idle=False, outfile=None, output_format="xml", silent=False,
    )
    values.update(kwargs)
    return argparse.Namespace(**values)


class TestDefaults:

    def test_defaults(self):
        cfg = ScrapeConfig(start_url="https://example.com/")
        assert cfg.browser == "chromium"
        assert cfg.output_format == "xml"
        assert cfg.page_limit == 0
        assert cfg.fetch_timeout_s == 120.0
        assert cfg.max_retries == 1
        assert cfg.wait_until == "load"
        cfg.validate()

    def test_network_idle(self):
        assert ScrapeConfig(wait_for_network_idle=True).wait_until == "networkidle"


class TestFromCliArgs:

    def test_patterns_split_and_merged(self):
        cfg = ScrapeConfig.from_cli_args(_namespace(match=["/a/*,/b/*", "/c"], follow_match=["/{x,y}/**"]))
        assert cfg.match_patterns == ["/a/*", "/b/*", "/c"]
        assert cfg.follow_patterns == ["/{x,y}/**"]

    def test_json_outfile_forces_json(self):
        cfg = ScrapeConfig.from_cli_args(_namespace(outfile="out/Result.JSON", output_format="xml"))
        assert cfg.output_format == "json"

    def test_explicit_json_format(self):
        cfg = ScrapeConfig.from_cli_args(_namespace(outfile="out.txt", output_format="JSON"))
        assert cfg.output_format == "json"

    def test_browser_normalized(self):
        assert ScrapeConfig.from_cli_args(_namespace(browser=" LightPanda ")).browser == "lightpanda"

    def test_missing_browser_uses_environment(self, monkeypatch):
        monkeypatch.setenv(BROWSER_ENV_VAR, "lightpanda")
        assert ScrapeConfig.from_cli_args(_namespace(browser=None)).browser == "lightpanda"


class TestValidate:

    @pytest.mark.parametrize("overrides, message", [
        (dict(browser="firefox"), "unsupported browser"),
        (dict(output_format="yaml"), "unsupported output format"),
        (dict(url_file="urls.txt"), "cannot use --url-file"),
        (dict(start_url=None), "start URL or --url-file"),
        (dict(page_limit=-1), "--limit"),
        (dict(max_retries=-1), "max_retries"),
    ])
    def test_rejects(self, overrides, message):
        values = dict(start_url="https://example.com/")
        values.update(overrides)
        with pytest.raises(ConfigError, match=message):
            ScrapeConfig(**values).validate()

    def test_url_file_alone_is_valid(self):
        ScrapeConfig(url_file="urls.txt").validate()


class TestDefaultBrowser:

    def test_unset(self, monkeypatch):
        monkeypatch.delenv(BROWSER_ENV_VAR, raising=False)
        assert default_browser() == "chromium"

    def test_supported_value(self, monkeypatch):
        monkeypatch.setenv(BROWSER_ENV_VAR, "LIGHTPANDA")
        assert default_browser() == "lightpanda"

    def test_unsupported_value_ignored(self, monkeypatch):
        monkeypatch.setenv(BROWSER_ENV_VAR, "netscape")
        assert default_browser() == "chromium"
