from locator.cache.stats import UsageAggregator

def test_unique_keys_per_value():
    agg = UsageAggregator()
    assert agg.add("alice", "France") is True
    assert agg.add("alice", "France") is False
    assert agg.add("bob", "France") is True
    assert agg.add("carol", None) is False
    assert agg.count("France") == 2
    assert agg.count("Spain") == 0

def test_discard_drops_empty_values():
    agg = UsageAggregator()
    agg.add("alice", "France")
    assert agg.discard("alice", "France") is True
    assert agg.discard("alice", "France") is False
    assert len(agg) == 0

def test_summary_sorted_desc():
    agg = UsageAggregator()
    for k in ("a", "b", "c"):
        agg.add(k, "Japan")
    agg.add("d", "Brazil")
    s = agg.summary()
    assert s.total == 4
    assert s.counts == [("Japan", 3), ("Brazil", 1)]

def test_clear():
    agg = UsageAggregator()
    agg.add("a", "Japan")
    agg.clear()
    assert agg.counts() == {}
