"""
apmagent Metrics Tests

Tests cover: metric statistics, scoped collections, merging and the
transaction segment normalizer.
"""

import pytest


# =============================================================================
# Metric Stats Tests
# =============================================================================

class TestMetricStats:
    """Test statistics accumulation."""

    def test_record_value(self):
        """Test min, max and totals track recorded values."""
        from apmagent.metrics import MetricStats

        stats = MetricStats()
        stats.record_value(2.0)
        stats.record_value(4.0, 1.0)

        assert stats.to_json() == [2, 6.0, 3.0, 2.0, 4.0, 20.0]

    def test_merge(self):
        """Test merging two stats combines every field."""
        from apmagent.metrics import MetricStats

        first = MetricStats()
        first.record_value(3.0)
        second = MetricStats()
        second.record_value(1.0)
        second.record_value(5.0)

        first.merge(second)

        assert first.call_count == 3
        assert first.min == 1.0
        assert first.max == 5.0
        assert first.total == 9.0

    def test_merge_into_empty(self):
        """Test an empty stats object takes the other's minimum."""
        from apmagent.metrics import MetricStats

        empty = MetricStats()
        other = MetricStats()
        other.record_value(7.0)

        empty.merge(other)

        assert empty.min == 7.0

    def test_increment_call_count(self):
        """Test counting without timing."""
        from apmagent.metrics import MetricStats

        stats = MetricStats()
        stats.increment_call_count()
        stats.increment_call_count(4)

        assert stats.call_count == 5
        assert stats.total == 0.0


class TestMetrics:
    """Test scoped and unscoped metric collections."""

    def test_measure_milliseconds_in_seconds(self):
        """Test millisecond measurements are stored as seconds."""
        from apmagent.metrics import Metrics

        metrics = Metrics()
        metrics.measure_milliseconds("Datastore/all", None, 250, 100)

        stats = metrics.get_metric("Datastore/all")
        assert stats.total == pytest.approx(0.25)
        assert stats.total_exclusive == pytest.approx(0.1)

    def test_scoped_metrics(self):
        """Test scoped metrics are kept apart from unscoped ones."""
        from apmagent.metrics import Metrics

        metrics = Metrics()
        metrics.measure_milliseconds("External/all", "WebTransaction/Uri/a", 10)

        assert metrics.get_metric("External/all") is None
        assert metrics.get_metric("External/all", "WebTransaction/Uri/a").call_count == 1

    def test_empty(self):
        """Test emptiness across scopes."""
        from apmagent.metrics import Metrics

        metrics = Metrics()
        assert metrics.empty

        metrics.get_or_create_metric("Custom/x", "scope").increment_call_count()
        assert not metrics.empty

    def test_merge_keeps_earliest_start(self):
        """Test merging keeps the earliest window start."""
        from apmagent.metrics import Metrics

        older = Metrics()
        older.started = 100.0
        newer = Metrics()
        newer.started = 200.0
        older.get_or_create_metric("Custom/a").increment_call_count()

        newer.merge(older)

        assert newer.started == 100.0
        assert newer.get_metric("Custom/a").call_count == 1

    def test_to_json(self):
        """Test serialization lists unscoped then scoped metrics."""
        from apmagent.metrics import Metrics

        metrics = Metrics()
        metrics.get_or_create_metric("A").increment_call_count()
        metrics.get_or_create_metric("B", "Scope").increment_call_count()

        data = metrics.to_json()

        assert data[0][0] == {"name": "A"}
        assert data[1][0] == {"name": "B", "scope": "Scope"}
        assert data[1][1][0] == 1


# =============================================================================
# Segment Normalizer Tests
# =============================================================================

class TestTxSegmentNormalizer:
    """Test transaction segment term rules."""

    def test_replaces_unknown_segments(self):
        """Test segments not in terms become a star."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri/store/", "terms": ["checkout"]}])

        result = normalizer.normalize("WebTransaction/Uri/store/checkout/123")

        assert result.matched is True
        assert result.value == "WebTransaction/Uri/store/checkout/*"

    def test_adjacent_stars_collapse(self):
        """Test runs of unknown segments collapse into one star."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri", "terms": ["users", "posts"]}])

        result = normalizer.normalize("WebTransaction/Uri/users/1/2/posts/3")

        assert result.value == "WebTransaction/Uri/users/*/posts/*"

    def test_trailing_slash_dropped(self):
        """Test a trailing empty segment is removed."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri", "terms": ["a"]}])

        assert normalizer.normalize("WebTransaction/Uri/a/").value == "WebTransaction/Uri/a"

    def test_no_matching_prefix(self):
        """Test names outside every prefix are unchanged."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri", "terms": []}])

        result = normalizer.normalize("OtherTransaction/Custom/job")

        assert result.matched is False
        assert result.value == "OtherTransaction/Custom/job"

    def test_non_list_ignored(self):
        """Test loading a non-list keeps the previous rules."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri", "terms": ["a"]}])

        normalizer.load({"prefix": "Bad/Rules", "terms": []})

        assert [rule.prefix for rule in normalizer.terms] == ["WebTransaction/Uri/"]

    def test_invalid_rules_skipped(self):
        """Test malformed rules are filtered out."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([
            {"prefix": "WebTransaction", "terms": ["a"]},
            {"prefix": "", "terms": ["a"]},
            {"prefix": "WebTransaction/Uri", "terms": "a"},
            "not a rule",
            {"prefix": "WebTransaction//Uri", "terms": []},
            {"prefix": "WebTransaction/Message", "terms": ["queue"]},
        ])

        assert [rule.prefix for rule in normalizer.terms] == ["WebTransaction/Message/"]

    def test_duplicate_prefix_last_wins(self):
        """Test a repeated prefix keeps the last rule."""
        from apmagent.metrics import TxSegmentNormalizer

        normalizer = TxSegmentNormalizer()
        normalizer.load([
            {"prefix": "WebTransaction/Uri", "terms": ["a"]},
            {"prefix": "WebTransaction/Uri/", "terms": ["b"]},
        ])

        assert len(normalizer.terms) == 1
        assert normalizer.normalize("WebTransaction/Uri/b/a").value == "WebTransaction/Uri/b/*"
