import json

from dynwhitelist.cache import SnapshotCache
from dynwhitelist.document import (
    ConfigurationDocument,
    IPStrategy,
    SourceResult,
    build_document,
    merge_documents,
    resolve_sources,
)
from dynwhitelist.errors import TransportError


def as_data(document: ConfigurationDocument) -> dict:
    return json.loads(document.to_json())


def test_empty_document_has_full_envelope():
    data = json.loads(ConfigurationDocument().to_json())
    assert data == {
        "http": {"routers": {}, "middlewares": {}, "services": {}, "serversTransports": {}},
        "tcp": {"routers": {}, "middlewares": {}, "services": {}},
        "tls": {"stores": {}, "options": {}},
        "udp": {"routers": {}, "services": {}},
    }


def test_build_document_without_strategy():
    document = build_document({"public_ipwhitelist": ["192.0.2.123"]})
    data = as_data(document)
    assert data["http"]["middlewares"] == {
        "public_ipwhitelist": {"ipWhiteList": {"sourceRange": ["192.0.2.123"]}},
    }
    assert data["tcp"]["middlewares"] == {}


def test_build_document_default_strategy_is_omitted():
    document = build_document({"rule": ["192.0.2.123"]}, IPStrategy())
    assert "ipStrategy" not in as_data(document)["http"]["middlewares"]["rule"]["ipWhiteList"]


def test_build_document_with_strategy():
    strategy = IPStrategy(depth=1, excluded_ips=["123.0.0.1"])
    document = build_document({"rule": ["192.0.2.123", "1234:1234:1234:1234::/64"]}, strategy)
    whitelist = as_data(document)["http"]["middlewares"]["rule"]["ipWhiteList"]
    assert whitelist == {
        "sourceRange": ["192.0.2.123", "1234:1234:1234:1234::/64"],
        "ipStrategy": {"depth": 1, "excludedIPs": ["123.0.0.1"]},
    }


def test_build_document_with_tcp():
    document = build_document({"list1": ["10.0.0.3", "10.0.0.4"]}, include_tcp=True)
    data = as_data(document)
    assert data["tcp"]["middlewares"] == {
        "list1": {"ipWhiteList": {"sourceRange": ["10.0.0.3", "10.0.0.4"]}},
    }
    assert document.source_range("list1") == ["10.0.0.3", "10.0.0.4"]
    assert document.source_range("missing") is None


def test_build_document_is_byte_identical():
    rules = {"b": ["10.0.0.2"], "a": ["10.0.0.1"]}
    strategy = IPStrategy(depth=2)
    first = build_document(rules, strategy, include_tcp=True).to_json()
    second = build_document(rules, strategy, include_tcp=True).to_json()
    assert first == second


def test_build_document_preserves_rule_order():
    document = build_document({"b": ["10.0.0.2"], "a": ["10.0.0.1"]})
    assert list(document.http.middlewares) == ["b", "a"]


def test_resolve_sources_updates_cache_on_success():
    cache = SnapshotCache()
    resolved, failures = resolve_sources(
        [SourceResult("office", "http://lists.test/office", addresses=("10.0.0.3",))], cache
    )
    assert resolved == {"office": ("10.0.0.3",)}
    assert failures == []
    assert cache.get("office") == ("10.0.0.3",)


def test_resolve_sources_falls_back_to_cache():
    cache = SnapshotCache()
    cache.put("office", ["10.0.0.3"])
    error = TransportError("http://lists.test/office", "HTTP 500", status_code=500)

    resolved, failures = resolve_sources(
        [SourceResult("office", "http://lists.test/office", error=error)], cache, provider="lists"
    )
    assert resolved == {"office": ("10.0.0.3",)}
    assert len(failures) == 1
    assert failures[0].provider == "lists"
    assert failures[0].key == "office"
    assert failures[0].error is error
    assert failures[0].used_cache is True
    assert cache.get("office") == ("10.0.0.3",)


def test_resolve_sources_never_succeeded_is_empty():
    cache = SnapshotCache()
    error = TransportError("http://lists.test/office", "connection refused")

    resolved, failures = resolve_sources(
        [SourceResult("office", "http://lists.test/office", error=error)], cache
    )
    assert resolved == {"office": ()}
    assert failures[0].used_cache is False
    assert cache.get("office") is None


def test_resolve_sources_keeps_configuration_order():
    cache = SnapshotCache()
    results = [
        SourceResult("z", "http://lists.test/z", addresses=("10.0.0.26",)),
        SourceResult("a", "http://lists.test/a", error=TransportError("http://lists.test/a", "x")),
        SourceResult("m", "http://lists.test/m", addresses=("10.0.0.13",)),
    ]
    resolved, _ = resolve_sources(results, cache)
    assert list(resolved) == ["z", "a", "m"]


def test_merge_documents():
    public = build_document({"public_ipwhitelist": ["192.0.2.123"]})
    lists = build_document({"list1": ["10.0.0.3"]}, include_tcp=True)

    merged = merge_documents([public, lists])
    assert list(merged.http.middlewares) == ["public_ipwhitelist", "list1"]
    assert list(merged.tcp.middlewares) == ["list1"]
    assert merged.tls.stores == {}
