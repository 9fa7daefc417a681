from logsync.filters import (
    Filter,
    ServerFilter,
    build_search_matcher,
    build_span_finder,
    compile_search,
    matches_server_filter,
    partition,
    source_predicate,
)
from logsync.models import LogEntry, ParsedLog


def _entry(entry_id=1, raw="hello world", level=None, source=None):
    parsed = ParsedLog(level=level, source=source) if (level or source) else None
    return LogEntry(id=entry_id, timestamp="", raw=raw, parsed=parsed)


class TestFilterBuild:
    def test_normalizes_levels_and_sources(self):
        flt = Filter.build(levels=["error", " warn ", ""], sources=["web", " ", "db "])
        assert flt.levels == frozenset({"ERROR", "WARN"})
        assert flt.sources == frozenset({"web", "db"})

    def test_defaults(self):
        flt = Filter.build()
        assert flt.search == ""
        assert flt.sources == frozenset()


class TestPartition:
    def test_sources_never_reach_server_filter(self):
        flt = Filter.build(search="timeout", regex=True, levels=["ERROR"], sources=["web"])
        server, predicate = partition(flt)
        assert server == ServerFilter(search="timeout", regex=True, levels=frozenset({"ERROR"}))
        assert "sources" not in server.to_wire()
        assert "sources" not in server.to_query_params()
        assert predicate(_entry(source="web"))
        assert not predicate(_entry(source="db"))

    def test_empty_sources_match_everything(self):
        _, predicate = Filter.build(levels=["INFO"]).partition()
        assert predicate(_entry())
        assert predicate(_entry(source="anything"))

    def test_toggle_source(self):
        flt = Filter.build().toggle_source("web")
        assert flt.sources == frozenset({"web"})
        assert flt.toggle_source("web").sources == frozenset()

    def test_with_and_without_sources(self):
        flt = Filter.build(search="x").with_sources(["a", "b"])
        assert flt.sources == frozenset({"a", "b"})
        assert flt.without_sources() == Filter.build(search="x")


class TestServerFilterEncoding:
    def test_query_params(self):
        sf = ServerFilter(search="disk", regex=True, levels=frozenset({"WARN", "ERROR"}), after_id=10, limit=50)
        assert sf.to_query_params() == {
            "search": "disk",
            "levels": "ERROR,WARN",
            "regex": "true",
            "afterId": "10",
            "limit": "50",
        }

    def test_empty_filter_encodes_nothing(self):
        assert ServerFilter().to_query_params() == {}
        assert ServerFilter().to_wire() == {}

    def test_wire_shape(self):
        sf = ServerFilter(search="x", levels=frozenset({"INFO"}))
        assert sf.to_wire() == {"search": "x", "levels": ["INFO"]}

    def test_with_limit(self):
        assert ServerFilter(search="x").with_limit(10).limit == 10


class TestSourcePredicate:
    def test_entry_without_source_excluded_when_filtering(self):
        predicate = source_predicate({"web"})
        assert not predicate(_entry())

    def test_none_matches_all(self):
        assert source_predicate(None)(_entry())


class TestSearch:
    def test_literal_case_insensitive(self):
        matcher = build_search_matcher("ERROR")
        assert matcher(_entry(raw="an error occurred"))
        assert not matcher(_entry(raw="all good"))

    def test_literal_does_not_interpret_metacharacters(self):
        matcher = build_search_matcher("a.c")
        assert matcher(_entry(raw="xa.cx"))
        assert not matcher(_entry(raw="abc"))

    def test_regex(self):
        matcher = build_search_matcher(r"status=5\d\d", regex=True)
        assert matcher(_entry(raw="GET / status=503"))
        assert not matcher(_entry(raw="GET / status=200"))

    def test_invalid_regex_falls_back_to_literal(self):
        pattern = compile_search("[unclosed", regex=True)
        assert pattern.search("has [UNCLOSED bracket")
        assert not pattern.search("unclosed")

    def test_empty_search(self):
        assert compile_search("") is None
        assert build_search_matcher(None)(_entry())

    def test_span_finder(self):
        find = build_span_finder("ab")
        assert find("xAbyab") == [(1, 3), (4, 6)]
        assert build_span_finder("")("anything") == []

    def test_span_finder_skips_empty_matches(self):
        assert build_span_finder("x*", regex=True)("abc") == []


class TestMatchesServerFilter:
    def test_levels(self):
        sf = ServerFilter(levels=frozenset({"ERROR"}))
        assert matches_server_filter(_entry(level="error"), sf)
        assert not matches_server_filter(_entry(level="INFO"), sf)
        assert not matches_server_filter(_entry(), sf)

    def test_after_id(self):
        sf = ServerFilter(after_id=5)
        assert not matches_server_filter(_entry(entry_id=5), sf)
        assert matches_server_filter(_entry(entry_id=6), sf)

    def test_search(self):
        sf = ServerFilter(search="world")
        assert matches_server_filter(_entry(raw="hello world"), sf)
        assert not matches_server_filter(_entry(raw="hello"), sf)
