from datetime import datetime

from tensilekube.cache import UnschedulableCache, replace_pod_node_name_node_affinity

REQUIRED = "requiredDuringSchedulingIgnoredDuringExecution"
HOST = "kubernetes.io/hostname"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_cache(ttl=180.0):
    clock = FakeClock()
    stamps = iter(datetime(2020, 1, 1, 0, 0, s) for s in range(60))
    return UnschedulableCache(ttl=ttl, clock=clock, timestamp=lambda: next(stamps)), clock


def test_cache_add_two_owners():
    cache, clock = make_cache()
    cache.add("test", "1")
    clock.now = 5
    cache.add("test", "2")
    assert cache.get_freeze_time("test", "1") == datetime(2020, 1, 1, 0, 0, 0)
    assert cache.get_freeze_time("test", "2") == datetime(2020, 1, 1, 0, 0, 1)
    assert cache.get_freeze_nodes("1") == ["test"]
    assert cache.get_freeze_nodes("2") == ["test"]


def test_unknown_owner_and_node():
    cache = UnschedulableCache()
    cache.add("test", "1")
    assert cache.get_freeze_time("other", "1") is None
    assert cache.get_freeze_time("test", "missing") is None
    assert cache.get_freeze_nodes("missing") == []


def test_add_keeps_first_freeze_time():
    cache, clock = make_cache()
    cache.add("n1", "owner")
    clock.now = 10
    cache.add("n1", "owner")
    assert cache.get_freeze_time("n1", "owner") == datetime(2020, 1, 1, 0, 0, 0)


def test_freeze_nodes_listed():
    cache, _ = make_cache()
    cache.add("n1", "owner")
    cache.add("n2", "owner")
    cache.add("n3", "other")
    assert sorted(cache.get_freeze_nodes("owner")) == ["n1", "n2"]


def test_entries_expire():
    cache, clock = make_cache(ttl=180)
    cache.add("n1", "owner")
    clock.now = 100
    cache.add("n2", "owner")
    clock.now = 181
    assert cache.get_freeze_nodes("owner") == ["n2"]
    assert cache.get_freeze_time("n1", "owner") is None
    clock.now = 400
    assert cache.get_freeze_nodes("owner") == []


def test_expired_entry_can_be_added_again():
    cache, clock = make_cache(ttl=10)
    cache.add("n1", "owner")
    clock.now = 20
    cache.add("n1", "owner")
    assert cache.get_freeze_time("n1", "owner") == datetime(2020, 1, 1, 0, 0, 1)


def _not_in(values):
    return {"key": HOST, "operator": "NotIn", "values": values}


def test_replace_none_affinity():
    affinity, count = replace_pod_node_name_node_affinity(None, "o", 0, None, "n1", "n2")
    assert count == 1
    assert affinity == {
        "nodeAffinity": {REQUIRED: {"nodeSelectorTerms": [{"matchExpressions": [_not_in(["n1", "n2"])]}]}}
    }


def test_replace_without_node_affinity():
    affinity, count = replace_pod_node_name_node_affinity({"podAffinity": {}}, "o", 0, None, "n1")
    assert count == 1
    assert affinity["podAffinity"] == {}
    assert affinity["nodeAffinity"][REQUIRED]["nodeSelectorTerms"][0]["matchExpressions"] == [_not_in(["n1"])]


def test_replace_without_required():
    affinity, _ = replace_pod_node_name_node_affinity({"nodeAffinity": {}}, "o", 0, None, "n1")
    assert affinity["nodeAffinity"][REQUIRED] == {
        "nodeSelectorTerms": [{"matchExpressions": [_not_in(["n1"])]}]
    }


def test_replace_without_terms_uses_match_fields():
    affinity, count = replace_pod_node_name_node_affinity(
        {"nodeAffinity": {REQUIRED: {}}}, "o", 0, None, "n1"
    )
    assert count == 1
    assert affinity["nodeAffinity"][REQUIRED]["nodeSelectorTerms"] == [{"matchFields": [_not_in(["n1"])]}]


def test_replace_merges_existing_values():
    other = {"key": "zone", "operator": "In", "values": ["a"]}
    affinity = {"nodeAffinity": {REQUIRED: {"nodeSelectorTerms": [
        {"matchExpressions": [other, _not_in(["a", "n1"])]},
        {"matchFields": [other]},
    ]}}}
    result, count = replace_pod_node_name_node_affinity(affinity, "o", 0, None, "n1", "n2")
    assert count == 1
    terms = result["nodeAffinity"][REQUIRED]["nodeSelectorTerms"]
    assert terms == [{"matchExpressions": [other, _not_in(["a", "n1", "n2"])]}]


def test_replace_check_func_drops_values():
    calls = []

    def check(value, owner, expire):
        calls.append((value, owner, expire))
        return value == "a"

    affinity = {"nodeAffinity": {REQUIRED: {"nodeSelectorTerms": [
        {"matchExpressions": [_not_in(["a", "b", "n1"])]}
    ]}}}
    result, count = replace_pod_node_name_node_affinity(affinity, "o", 30, check, "n1")
    assert count == 1
    assert result["nodeAffinity"][REQUIRED]["nodeSelectorTerms"][0]["matchExpressions"] == [
        _not_in(["b", "n1"])
    ]
    assert calls == [("a", "o", 30), ("b", "o", 30)]


def test_replace_without_matching_expression_gives_zero():
    other = {"key": "zone", "operator": "In", "values": ["a"]}
    affinity = {"nodeAffinity": {REQUIRED: {"nodeSelectorTerms": [{"matchExpressions": [other]}]}}}
    result, count = replace_pod_node_name_node_affinity(affinity, "o", 0, None, "n1")
    assert count == 0
    assert result["nodeAffinity"][REQUIRED]["nodeSelectorTerms"] == [{"matchExpressions": [other]}]