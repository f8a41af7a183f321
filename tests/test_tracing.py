"""
apmagent Tracing Tests

Tests cover: segment tree construction, tracer nesting and timing,
transaction completion, metric recording and trace rendering.
"""

from dataclasses import dataclass
from typing import Optional

import pytest


@dataclass
class Segment:
    id: str
    parent_id: Optional[str] = None


# =============================================================================
# Segment Tree Tests
# =============================================================================

class TestSegmentTree:
    """Test parent/child reconstruction."""

    def test_add_children(self):
        """Test segments attach under their parents."""
        from apmagent.tracing import SegmentTree

        tree = SegmentTree(Segment("1"))
        tree.add(Segment("2", parent_id="1"))
        tree.add(Segment("3", parent_id="2"))
        tree.add(Segment("4", parent_id="1"))

        assert [n.segment.id for n in tree.root.children] == ["2", "4"]
        assert tree.find("3").segment.parent_id == "2"

    def test_orphan_dropped(self):
        """Test a segment whose parent is unknown is dropped."""
        from apmagent.tracing import SegmentTree

        tree = SegmentTree(Segment("1"))

        assert tree.add(Segment("2", parent_id="99")) is False
        assert tree.root.children == []

    def test_find_missing(self):
        """Test searching for an unknown id returns None."""
        from apmagent.tracing import SegmentTree

        tree = SegmentTree(Segment("1"))

        assert tree.find("nope") is None
        assert tree.find("1") is tree.root


# =============================================================================
# Timer Tests
# =============================================================================

class TestTimer:
    """Test interval measurement."""

    def test_duration_override(self):
        """Test an explicit duration replaces the measured one."""
        from apmagent.tracing import Timer

        timer = Timer()
        timer.begin()
        timer.set_duration_ms(42)

        assert timer.get_duration_ms() == 42
        assert timer.is_running is False

    def test_not_started(self):
        """Test an unstarted timer reports zero."""
        from apmagent.tracing import Timer

        assert Timer().get_duration_ms() == 0.0


# =============================================================================
# Tracer Tests
# =============================================================================

class TestTracer:
    """Test tracer nesting and timing."""

    def test_requires_transaction(self):
        """Test a tracer cannot exist without a transaction."""
        from apmagent.tracing import Tracer

        with pytest.raises(ValueError):
            Tracer(None, "orphan")

    def test_nesting_follows_context(self):
        """Test new tracers are parented to the innermost open tracer."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="nested")
        root = Tracer(transaction, "ROOT")
        with Tracer(transaction, "outer") as outer:
            inner = Tracer(transaction, "inner")
            inner.finish()
        sibling = Tracer(transaction, "sibling")

        assert outer.parent_id == root.id
        assert inner.parent_id == outer.id
        assert sibling.parent_id == root.id

    def test_explicit_parent(self):
        """Test an explicit parent overrides the context."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="explicit")
        root = Tracer(transaction, "ROOT")
        first = Tracer(transaction, "first")
        second = Tracer(transaction, "second", parent=root)

        assert first.parent_id == root.id
        assert second.parent_id == root.id
        assert second.parent is root

    def test_exclusive_duration(self):
        """Test exclusive time subtracts finished children."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="exclusive")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child")
        child.set_duration_ms(30)
        child.finish()
        root.set_duration_ms(100)

        assert root.exclusive_duration_ms == pytest.approx(70)

    def test_exclusive_duration_never_negative(self):
        """Test children longer than their parent floor exclusive time at zero."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="overlap")
        root = Tracer(transaction, "ROOT")
        for _ in range(3):
            child = Tracer(transaction, "child")
            child.set_duration_ms(50)
            child.finish()
        root.set_duration_ms(10)
        root.finish()

        assert all(t.exclusive_duration_ms >= 0 for t in transaction.tracers)
        assert root.exclusive_duration_ms == 0

    def test_finish_is_idempotent(self):
        """Test finishing twice reports the child only once."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="idempotent")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child")
        child.set_duration_ms(5)
        child.finish()
        child.finish()

        assert root.child_duration_total == 5

    def test_segment_attributes(self):
        """Test segment attributes reach span events and trace segments."""
        from apmagent.tracing import Tracer, Transaction
        from apmagent.types import Destination

        transaction = Transaction(name="attrs")
        root = Tracer(transaction, "ROOT")
        root.add_attribute("db.system", "postgres")

        assert root.attributes.get(Destination.SPAN_EVENT) == {"db.system": "postgres"}
        assert root.attributes.get(Destination.TRANS_SEGMENT) == {"db.system": "postgres"}

    def test_span_event(self):
        """Test span events link to the transaction and parent."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="spans")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child")

        root_span = root.to_span_event()["intrinsics"]
        child_span = child.to_span_event()["intrinsics"]

        assert root_span["nr.entryPoint"] is True
        assert "parentId" not in root_span
        assert child_span["parentId"] == root.id
        assert child_span["traceId"] == transaction.trace_id


# =============================================================================
# Transaction Tests
# =============================================================================

class TestTransaction:
    """Test transaction completion."""

    def test_finishes_on_root_pop(self):
        """Test popping the root finishes the transaction."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="done")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child")
        child.finish()
        assert transaction.finished is False

        root.finish()

        assert transaction.finished is True

    def test_finished_event_fires_once(self):
        """Test transaction_finished fires exactly once."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="once")
        finished = []
        transaction.subscribe(Transaction.FINISHED_EVENT, finished.append)
        root = Tracer(transaction, "ROOT")

        root.finish()
        root.finish()
        transaction.end()
        transaction.pop(root)

        assert finished == [transaction]

    def test_open_tracers_force_finished(self):
        """Test still-open tracers are finished with the root."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="forced")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child")
        grandchild = Tracer(transaction, "grandchild")

        root.finish()

        assert child.finished and grandchild.finished
        assert child.child_duration_total == pytest.approx(grandchild.duration_ms)

    def test_push_after_finish_rejected(self):
        """Test a tracer created after completion is not registered."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="late")
        with transaction:
            Tracer(transaction, "ROOT")

        late = Tracer(transaction, "late")

        assert late.pushed is False
        assert late not in transaction.tracers
        late.finish()

    def test_pop_unregistered_ignored(self):
        """Test popping a foreign tracer does nothing."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="mine")
        Tracer(transaction, "ROOT")
        other = Transaction(name="other")
        foreign = Tracer(other, "ROOT")

        transaction.pop(foreign)

        assert transaction.finished is False

    def test_metrics_recorded(self):
        """Test tracer and transaction metrics on completion."""
        from apmagent.tracing import Tracer, Transaction
        from apmagent.types import TransactionType

        transaction = Transaction(name="Custom/job", transaction_type=TransactionType.BACKGROUND)
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child", "Custom/child")
        child.set_duration_ms(20)
        child.finish()
        root.set_duration_ms(50)
        root.finish()

        metrics = transaction.metrics
        assert transaction.full_name == "OtherTransaction/Custom/job"
        assert metrics.get_metric("Custom/child").call_count == 1
        assert metrics.get_metric("Custom/child", scope="OtherTransaction/Custom/job").total == pytest.approx(0.02)
        assert metrics.get_metric("OtherTransaction/all").call_count == 1
        stats = metrics.get_metric("OtherTransaction/Custom/job")
        assert stats.total == pytest.approx(0.05)
        assert stats.total_exclusive == pytest.approx(0.03)

    def test_callable_recorder_runs_once(self):
        """Test a recorder function is called exactly once per tracer."""
        from apmagent.tracing import Tracer, Transaction

        calls = []

        def recorder(tracer, unscoped, scoped):
            calls.append(tracer.name)
            unscoped.measure_milliseconds("Custom/fn", tracer.duration_ms)

        transaction = Transaction(name="recorder")
        root = Tracer(transaction, "ROOT")
        child = Tracer(transaction, "child", recorder)
        child.finish()
        root.finish()
        child.record_metrics(transaction.metrics.unscoped)

        assert calls == ["child"]
        assert transaction.metrics.get_metric("Custom/fn").call_count == 1

    def test_web_name_from_url(self):
        """Test web transactions are named from the URL when unnamed."""
        from apmagent.tracing import Transaction

        transaction = Transaction(url="/users/42")

        assert transaction.get_full_name() == "WebTransaction/Uri/users/42"

    def test_name_normalized(self):
        """Test segment terms normalize the final name."""
        from apmagent.metrics import TxSegmentNormalizer
        from apmagent.tracing import Tracer, Transaction

        normalizer = TxSegmentNormalizer()
        normalizer.load([{"prefix": "WebTransaction/Uri/store", "terms": ["checkout"]}])
        transaction = Transaction(url="/store/checkout/123", normalizer=normalizer)
        root = Tracer(transaction, "ROOT")
        root.finish()

        assert transaction.full_name == "WebTransaction/Uri/store/checkout/*"

    def test_transaction_event(self):
        """Test the transaction event carries intrinsics and attributes."""
        from apmagent.tracing import Tracer, Transaction

        transaction = Transaction(name="event")
        transaction.status_code = 200
        transaction.add_attribute("user.tier", "gold")
        Tracer(transaction, "ROOT").finish()

        intrinsics, attributes = transaction.to_event()

        assert intrinsics["type"] == "Transaction"
        assert intrinsics["name"] == "WebTransaction/event"
        assert intrinsics["httpResponseCode"] == 200
        assert attributes == {"user.tier": "gold"}


# =============================================================================
# Trace Tests
# =============================================================================

class TestTrace:
    """Test trace rendering."""

    def test_nested_segments(self):
        """Test the trace mirrors the tracer hierarchy."""
        from apmagent.tracing import Trace, Tracer, Transaction

        transaction = Transaction(name="render")
        root = Tracer(transaction, "ROOT")
        with Tracer(transaction, "db") as db:
            db.add_attribute("db.statement", "select 1")
            Tracer(transaction, "socket").finish()
        root.finish()

        data = Trace(transaction).to_json()
        segment = data["root"]

        assert data["transaction"] == "WebTransaction/render"
        assert segment[0] == 0
        assert segment[2] == "ROOT"
        assert len(segment[4]) == 1
        db_segment = segment[4][0]
        assert db_segment[2] == "db"
        assert db_segment[3] == {"db.statement": "select 1"}
        assert db_segment[4][0][2] == "socket"
        assert db_segment[1] >= db_segment[0] >= 0
