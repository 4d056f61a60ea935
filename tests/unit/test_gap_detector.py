"""Unit tests for gap detection."""

from datetime import datetime, timedelta, timezone

import pytest

from taskbridge.config.models import GapDetectionConfig
from taskbridge.gaps.detector import GapDetector, MissingTaskError, compute_indicators, detect_gaps
from taskbridge.graph.models import DependencyEdge, RelationshipType, TaskNode, generate_task_id
from taskbridge.store.memory import InMemoryGraphStore
from taskbridge.store.recovery import ProcessedDocument

START = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _node(text, days=0, document_id="doc-1"):
    return TaskNode.from_text(text, document_id, created_at=START + timedelta(days=days))


@pytest.fixture
def receipts():
    return _node("Gather the quarterly receipts", days=0)


@pytest.fixture
def tax_return():
    return _node("File the yearly tax return", days=10)


@pytest.mark.asyncio
async def test_time_and_dependency_gap(receipts, tax_return):
    """Test a 10-day gap without a dependency yields confidence 0.6."""
    store = InMemoryGraphStore(nodes=[receipts, tax_return])

    result = await detect_gaps(store, [receipts.task_id, tax_return.task_id])

    assert len(result.gaps) == 1
    gap = result.gaps[0]
    assert gap.predecessor_task_id == receipts.task_id
    assert gap.successor_task_id == tax_return.task_id
    assert gap.indicators.time_gap is True
    assert gap.indicators.no_dependency is True
    assert gap.indicators.action_type_jump is False
    assert gap.indicators.skill_jump is False
    assert gap.confidence == 0.6
    assert result.metadata.total_pairs_analyzed == 1
    assert result.metadata.gaps_detected == 1


@pytest.mark.asyncio
async def test_existing_dependency_suppresses_gap(receipts, tax_return):
    """Test a direct dependency leaves only one indicator."""
    store = InMemoryGraphStore(
        nodes=[receipts, tax_return],
        edges=[DependencyEdge(source_task_id=receipts.task_id, target_task_id=tax_return.task_id)],
    )

    result = await detect_gaps(store, [receipts.task_id, tax_return.task_id])

    assert result.gaps == []
    assert result.metadata.total_pairs_analyzed == 1


@pytest.mark.asyncio
async def test_related_edge_is_not_a_dependency(receipts, tax_return):
    """Test related edges don't count as dependencies."""
    store = InMemoryGraphStore(
        nodes=[receipts, tax_return],
        edges=[
            DependencyEdge(
                source_task_id=receipts.task_id,
                target_task_id=tax_return.task_id,
                relationship_type=RelationshipType.RELATED,
            )
        ],
    )

    result = await detect_gaps(store, [receipts.task_id, tax_return.task_id])

    assert len(result.gaps) == 1


@pytest.mark.asyncio
async def test_reverse_path_skips_gap(receipts, tax_return):
    """Test pairs whose successor already reaches the predecessor are skipped."""
    store = InMemoryGraphStore(
        nodes=[receipts, tax_return],
        edges=[DependencyEdge(source_task_id=tax_return.task_id, target_task_id=receipts.task_id)],
    )

    result = await detect_gaps(store, [receipts.task_id, tax_return.task_id])

    assert result.gaps == []
    assert result.metadata.skipped_for_cycle == 1


@pytest.mark.asyncio
async def test_override_edges_count_as_dependencies(receipts, tax_return):
    """Test user overrides are merged with stored edges."""
    store = InMemoryGraphStore(nodes=[receipts, tax_return])
    store.add_override_edges(
        [DependencyEdge(source_task_id=receipts.task_id, target_task_id=tax_return.task_id)]
    )

    result = await detect_gaps(store, [receipts.task_id, tax_return.task_id])

    assert result.gaps == []


@pytest.mark.asyncio
async def test_gaps_sorted_and_capped():
    """Test gaps are ordered by confidence and limited to max_gaps."""
    nodes = [
        _node("Interview five pilot customers", days=0),
        _node("Implement payment webhook", days=20),
        _node("Gather the quarterly receipts", days=21),
        _node("File the yearly tax return", days=40),
    ]
    store = InMemoryGraphStore(nodes=nodes)
    ids = [node.task_id for node in nodes]

    result = await GapDetector(store, GapDetectionConfig(max_gaps=2)).detect(ids)

    assert len(result.gaps) == 2
    assert result.metadata.total_pairs_analyzed == 3
    # interview -> implement: time gap, action jump, no dependency
    assert result.gaps[0].predecessor_task_id == ids[0]
    assert result.gaps[0].confidence == 0.75
    assert result.gaps[1].confidence == 0.6
    confidences = [gap.confidence for gap in result.gaps]
    assert confidences == sorted(confidences, reverse=True)


@pytest.mark.asyncio
async def test_min_indicators_respected(receipts, tax_return):
    """Test a higher min_indicators suppresses weaker gaps."""
    store = InMemoryGraphStore(nodes=[receipts, tax_return])

    result = await detect_gaps(
        store, [receipts.task_id, tax_return.task_id], GapDetectionConfig(min_indicators=3)
    )

    assert result.gaps == []


@pytest.mark.asyncio
async def test_requires_two_ids(receipts):
    """Test fewer than two ids is rejected."""
    store = InMemoryGraphStore(nodes=[receipts])

    with pytest.raises(ValueError, match="At least two"):
        await detect_gaps(store, [receipts.task_id])


@pytest.mark.asyncio
async def test_missing_task_raises(receipts):
    """Test unknown ids raise MissingTaskError listing them."""
    store = InMemoryGraphStore(nodes=[receipts])

    with pytest.raises(MissingTaskError) as exc_info:
        await detect_gaps(store, [receipts.task_id, "zzz"])

    assert exc_info.value.missing_ids == ["zzz"]


@pytest.mark.asyncio
async def test_no_tasks_found_raises():
    """Test a lookup that finds nothing reports every id."""
    store = InMemoryGraphStore()

    with pytest.raises(MissingTaskError, match="No tasks found") as exc_info:
        await detect_gaps(store, ["x", "y"])

    assert exc_info.value.missing_ids == ["x", "y"]


@pytest.mark.asyncio
async def test_missing_task_recovered_from_documents(receipts):
    """Test a task absent from the node table is re-derived from its document."""
    text = "File the yearly tax return"
    document = ProcessedDocument(
        id="doc-2",
        processed_at=START + timedelta(days=12),
        structured_output={"actions": [{"text": text}], "lno_tasks": {"overhead": []}},
    )
    store = InMemoryGraphStore(nodes=[receipts], documents=[document])
    recovered_id = generate_task_id(text, "doc-2")

    result = await detect_gaps(store, [receipts.task_id, recovered_id])

    assert result.metadata.recovered_task_ids == [recovered_id]
    assert len(result.gaps) == 1
    assert result.gaps[0].indicators.time_gap is True
    # Detection only reads
    assert recovered_id not in store.nodes


def test_compute_indicators_uses_structural_pairs(receipts, tax_return):
    """Test no_dependency reflects the structural pair set."""
    pairs = {(receipts.task_id, tax_return.task_id)}

    indicators = compute_indicators(receipts, tax_return, pairs)

    assert indicators.no_dependency is False
    assert indicators.time_gap is True
    assert indicators.count == 1
