"""
Tests for path glob compilation and content/follow gating.
"""

import pytest

from sitepanda.errors import ConfigError, PatternError
from sitepanda.patterns import (
    PatternSet,
    compile_pattern,
    should_process_content,
    split_pattern_args,
)


def _matches(pattern, path):
    return compile_pattern(pattern).fullmatch(path) is not None


# ====================================================================
# Glob semantics
# ====================================================================

class TestGlobSemantics:

    def test_single_star_stays_in_segment(self):
        assert _matches("/blog/*", "/blog/post")
        assert not _matches("/blog/*", "/blog/post/edit")

    def test_double_star_crosses_segments(self):
        assert _matches("/blog/**", "/blog/post")
        assert _matches("/blog/**", "/blog/post/edit")

    def test_root_pattern_matches_only_root(self):
        assert _matches("/", "/")
        assert not _matches("/", "/about")

    def test_bare_star_matches_no_absolute_path(self):
        assert not _matches("*", "/anypage")
        assert not _matches("*", "/")

    def test_bare_double_star_matches_everything(self):
        assert _matches("**", "/")
        assert _matches("**", "/a/b/c")

    def test_double_star_in_the_middle(self):
        assert _matches("/docs/**/getting-started", "/docs/v1/guide/getting-started")
        assert not _matches("/docs/**/getting-started", "/docs/v1/guide/install")

    def test_question_mark(self):
        assert _matches("/v?/api", "/v2/api")
        assert not _matches("/v?/api", "/v10/api")
        assert not _matches("/a?b", "/a/b")

    def test_character_class_and_range(self):
        assert _matches("/v[12]/x", "/v1/x")
        assert not _matches("/v[12]/x", "/v3/x")
        assert _matches("/page-[a-c]", "/page-b")

    def test_negated_character_class(self):
        assert _matches("/v[!1]/x", "/v2/x")
        assert not _matches("/v[!1]/x", "/v1/x")

    def test_alternation(self):
        assert _matches("/{blog,news}/*", "/news/today")
        assert not _matches("/{blog,news}/*", "/events/today")

    def test_alternation_with_globs(self):
        assert _matches("/{docs/**,api/v?}", "/docs/a/b")
        assert _matches("/{docs/**,api/v?}", "/api/v2")

    def test_escape(self):
        assert _matches(r"/faq\?", "/faq?")
        assert not _matches(r"/faq\?", "/faqs")

    def test_regex_metacharacters_are_literal(self):
        assert _matches("/a.b+(c)", "/a.b+(c)")
        assert not _matches("/a.b", "/axb")

    def test_non_ascii_literal(self):
        assert _matches("/ドキュメント/*", "/ドキュメント/入門")


class TestInvalidPatterns:

    @pytest.mark.parametrize("pattern", ["/path[/", "/a{b,c", "/x\\", "/a]", "/[]"])
    def test_syntax_errors(self, pattern):
        with pytest.raises(PatternError):
            compile_pattern(pattern)

    def test_pattern_error_is_config_error(self):
        with pytest.raises(ConfigError):
            PatternSet(["/path[/"])


# ====================================================================
# PatternSet / should_process_content
# ====================================================================

class TestPatternSet:

    def test_empty_set_allows_everything(self):
        empty = PatternSet()
        assert not empty
        assert empty.allows("/anything/at/all")
        assert should_process_content("https://a.com/x/y?z=1", empty)

    def test_any_pattern_may_match(self):
        patterns = PatternSet(["/blog/*", "/docs/**"])
        assert patterns.allows("/docs/a/b")
        assert patterns.allows("/blog/post")
        assert not patterns.allows("/about")

    def test_url_path_decoded_before_matching(self):
        patterns = PatternSet(["/日本/*"])
        assert should_process_content("https://a.jp/%E6%97%A5%E6%9C%AC/page", patterns)

    def test_query_and_fragment_ignored(self):
        patterns = PatternSet(["/search"])
        assert should_process_content("https://a.com/search?q=python#top", patterns)

    def test_empty_path_counts_as_root(self):
        patterns = PatternSet(["/"])
        assert should_process_content("https://a.com", patterns)

    def test_allows_url(self):
        patterns = PatternSet(["/allowed/*"])
        assert patterns.allows_url("http://site.test/allowed/x")
        assert not patterns.allows_url("http://site.test/denied/y")


class TestSplitPatternArgs:

    def test_repeated_and_comma_separated(self):
        assert split_pattern_args(["/a/*,/b/**", "/c"]) == ["/a/*", "/b/**", "/c"]

    def test_commas_inside_alternation_kept(self):
        assert split_pattern_args(["/{a,b}/*,/c"]) == ["/{a,b}/*", "/c"]

    def test_blank_entries_dropped(self):
        assert split_pattern_args([" , /a ,"]) == ["/a"]
        assert split_pattern_args(None) == []
