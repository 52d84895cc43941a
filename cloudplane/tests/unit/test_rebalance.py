from __future__ import annotations

import random

import pytest

from cloudplane.core.errors import InvariantViolationError, RequestValidationError
from cloudplane.domain.rebalance import (
    ClusterChangeRequest,
    ClusterNodeMetadata,
    NodeGroupSize,
    rebalance_node_groups,
    resize_set_actions,
)


def _groups(**counts: int) -> dict[str, NodeGroupSize]:
    return {name: NodeGroupSize(min_count=count, max_count=count) for name, count in counts.items()}


def _counts(groups: dict[str, NodeGroupSize]) -> dict[str, int]:
    return {name: group.min_count for name, group in groups.items()}


def test_two_groups_shrink_evenly() -> None:
    # 21 nodes over (11, 10) shrinking to 11 removes five from each group.
    result = rebalance_node_groups(21, _groups(ng1=11, ng2=10), 11)
    assert result == {
        "ng1": NodeGroupSize(min_count=6, max_count=6),
        "ng2": NodeGroupSize(min_count=5, max_count=5),
    }


def test_four_groups_remainder_goes_to_lexicographically_first() -> None:
    # delta -10 over four groups: base -2, the first two by name take one more.
    result = rebalance_node_groups(21, _groups(d=5, b=5, c=5, a=6), 11)
    assert _counts(result) == {"a": 3, "b": 2, "c": 3, "d": 3}
    assert sum(_counts(result).values()) == 11


def test_growth_distributes_positive_remainder() -> None:
    # +7 over three groups: base 2, first group by name gets one extra.
    result = rebalance_node_groups(6, _groups(x=2, y=2, z=2), 13)
    assert _counts(result) == {"x": 5, "y": 4, "z": 4}


def test_zero_delta_keeps_counts_and_syncs_max() -> None:
    # With no delta every group keeps its size and max is pinned to min.
    groups = {"a": NodeGroupSize(min_count=3, max_count=9, instance_type="m5.large")}
    result = rebalance_node_groups(3, groups, 3)
    assert result == {"a": NodeGroupSize(min_count=3, max_count=3, instance_type="m5.large")}


def test_empty_groups_returns_empty_mapping() -> None:
    # Nothing to distribute across.
    assert rebalance_node_groups(5, {}, 10) == {}


def test_negative_result_is_an_invariant_violation() -> None:
    # Inconsistent aggregates must fail loudly instead of clamping to zero.
    with pytest.raises(InvariantViolationError):
        rebalance_node_groups(10, _groups(a=1, b=9), 0)


def test_input_mapping_is_not_mutated() -> None:
    # The rebalancer returns a new mapping and leaves the caller's groups alone.
    groups = _groups(a=4, b=4)
    snapshot = dict(groups)
    rebalance_node_groups(8, groups, 2)
    assert groups == snapshot


def test_random_inputs_reconstitute_requested_total() -> None:
    # Property: the new counts always sum to the requested aggregate.
    rng = random.Random(20240611)
    for _ in range(500):
        group_count = rng.randint(1, 8)
        counts = {f"ng-{index:02d}": rng.randint(0, 30) for index in range(group_count)}
        current = sum(counts.values())
        # Requested totals that cannot underflow any group.
        floor = current - group_count * min(counts.values())
        requested = rng.randint(max(0, floor), current + 50)
        result = rebalance_node_groups(current, _groups(**counts), requested)
        assert set(result) == set(counts)
        assert sum(group.min_count for group in result.values()) == requested
        assert all(group.min_count == group.max_count for group in result.values())


def test_random_inputs_spread_deltas_fairly_and_deterministically() -> None:
    # Property: per-group deltas differ by at most one and repeat across calls.
    rng = random.Random(7)
    for _ in range(300):
        group_count = rng.randint(1, 6)
        counts = {f"g{index}": rng.randint(20, 40) for index in range(group_count)}
        current = sum(counts.values())
        requested = rng.randint(max(0, current - 20 * group_count), current + 40)
        groups = _groups(**counts)
        first = rebalance_node_groups(current, groups, requested)
        second = rebalance_node_groups(current, groups, requested)
        assert first == second
        deltas = [first[name].min_count - counts[name] for name in counts]
        assert max(deltas) - min(deltas) <= 1


def test_resize_actions_grow_sets_max_before_min() -> None:
    # Growing raises max first so min never exceeds it.
    actions = resize_set_actions(NodeGroupSize(5, 5), NodeGroupSize(3, 3))
    assert actions == ["spec.maxSize=5", "spec.minSize=5"]


def test_resize_actions_shrink_sets_min_before_max() -> None:
    # Shrinking lowers min first so max never drops below it.
    actions = resize_set_actions(NodeGroupSize(2, 2, "m5.large"), NodeGroupSize(4, 4, "m5.xlarge"))
    assert actions == ["spec.minSize=2", "spec.maxSize=2", "spec.machineType=m5.large"]


def test_resize_actions_unchanged_group_is_empty() -> None:
    # No differences produce no actions.
    assert resize_set_actions(NodeGroupSize(3, 3, "t3"), NodeGroupSize(3, 3, "t3")) == []


def _metadata(**request_fields) -> ClusterNodeMetadata:
    return ClusterNodeMetadata(
        node_instance_type="m5.large",
        node_min_count=21,
        node_max_count=21,
        node_groups={
            "ng1": NodeGroupSize(11, 11, "m5.large"),
            "ng2": NodeGroupSize(10, 10, "m5.large"),
        },
        change_request=ClusterChangeRequest(**request_fields) if request_fields else None,
    )


def test_worker_node_resize_changes_requires_change_request() -> None:
    # Missing or empty change requests are rejected before any computation.
    with pytest.raises(RequestValidationError):
        _metadata().worker_node_resize_changes()
    metadata = _metadata()
    metadata.change_request = ClusterChangeRequest()
    with pytest.raises(RequestValidationError):
        metadata.worker_node_resize_changes()


def test_worker_node_resize_changes_rebalances_and_updates_instance_type() -> None:
    # Count and instance type changes both land on every group.
    metadata = _metadata(node_min_count=11, node_instance_type="m5.xlarge")
    changes = metadata.worker_node_resize_changes()
    assert changes == {
        "ng1": NodeGroupSize(6, 6, "m5.xlarge"),
        "ng2": NodeGroupSize(5, 5, "m5.xlarge"),
    }
    actions = metadata.resize_actions(changes)
    assert actions["ng1"] == ["spec.minSize=6", "spec.maxSize=6", "spec.machineType=m5.xlarge"]


def test_worker_node_resize_changes_instance_type_only_keeps_counts() -> None:
    # A zero node count in the request leaves group sizes untouched.
    metadata = _metadata(node_instance_type="c5.large")
    changes = metadata.worker_node_resize_changes()
    assert _counts(changes) == {"ng1": 11, "ng2": 10}
    assert {group.instance_type for group in changes.values()} == {"c5.large"}


def test_resize_actions_unknown_group_is_an_invariant_violation() -> None:
    # Changes must only reference groups the cluster already has.
    metadata = _metadata(node_min_count=5)
    with pytest.raises(InvariantViolationError):
        metadata.resize_actions({"ghost": NodeGroupSize(1, 1)})


def test_apply_node_group_changes_updates_aggregates() -> None:
    # Completing a resize folds the new group sizes back into the aggregates.
    metadata = _metadata(node_min_count=11, node_max_count=11, node_instance_type="m5.xlarge")
    changes = metadata.worker_node_resize_changes()
    metadata.apply_change_request()
    metadata.apply_node_group_changes(changes)
    metadata.clear_change_request()
    assert metadata.node_min_count == 11
    assert metadata.node_max_count == 11
    assert metadata.node_instance_type == "m5.xlarge"
    assert metadata.change_request is None


def test_apply_node_group_changes_without_groups_keeps_requested_aggregate() -> None:
    # Metadata with no node groups still takes the requested node count.
    metadata = ClusterNodeMetadata(
        node_min_count=2,
        node_max_count=2,
        change_request=ClusterChangeRequest(node_min_count=5, node_max_count=5),
    )
    changes = metadata.worker_node_resize_changes()
    assert changes == {}
    metadata.apply_node_group_changes(changes)
    metadata.apply_change_request()
    assert metadata.node_min_count == 5
    assert metadata.node_max_count == 5
    assert metadata.node_groups == {}


def test_metadata_json_round_trip_preserves_groups_and_request() -> None:
    # Stored metadata must decode back to the same value.
    metadata = _metadata(node_min_count=11)
    metadata.add_warning("resize pending")
    payload = metadata.to_json()
    assert payload["node_groups"]["ng1"] == {"min_count": 11, "max_count": 11, "instance_type": "m5.large"}
    assert ClusterNodeMetadata.from_json(payload) == metadata
    metadata.clear_change_request()
    metadata.clear_warnings()
    assert "change_request" not in metadata.to_json()
    assert ClusterNodeMetadata.from_json(None) == ClusterNodeMetadata()
