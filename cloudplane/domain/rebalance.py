from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Mapping

from cloudplane.core.errors import InvariantViolationError, RequestValidationError


@dataclass(frozen=True)
class NodeGroupSize:
    # Per node-group sizing; resize keeps min and max equal.
    min_count: int
    max_count: int
    instance_type: str = ""


@dataclass(frozen=True)
class ClusterChangeRequest:
    # Desired delta consumed by the provisioning collaborator; empty/zero means unchanged.
    version: str = ""
    ami: str = ""
    master_instance_type: str = ""
    master_count: int = 0
    node_instance_type: str = ""
    node_min_count: int = 0
    node_max_count: int = 0
    max_pods_per_node: int = 0
    networking: str = ""
    vpc: str = ""

    def is_empty(self) -> bool:
        return not any(
            (
                self.version,
                self.ami,
                self.master_instance_type,
                self.master_count,
                self.node_instance_type,
                self.node_min_count,
                self.node_max_count,
                self.max_pods_per_node,
                self.networking,
                self.vpc,
            )
        )


def _split_delta(delta: int, group_count: int) -> tuple[int, int]:
    # Truncate toward zero; Python's // floors, so divide magnitudes.
    sign = -1 if delta < 0 else 1
    base = sign * (abs(delta) // group_count)
    remainder = delta - base * group_count
    return base, remainder


def rebalance_node_groups(
    current_min: int,
    node_groups: Mapping[str, NodeGroupSize],
    requested_min: int,
) -> dict[str, NodeGroupSize]:
    """Spread ``requested_min - current_min`` nodes across every node group.

    Each group receives the truncated share of the delta; the first
    ``abs(remainder)`` groups in lexicographic name order receive one extra
    node (or one fewer when shrinking). Min and max are set to the same
    value. A negative result means the inputs were inconsistent and raises
    ``InvariantViolationError`` instead of clamping.
    """
    if not node_groups:
        return {}

    delta = requested_min - current_min
    names = sorted(node_groups)
    base, remainder = _split_delta(delta, len(names))
    step = 1 if remainder > 0 else -1

    resized: dict[str, NodeGroupSize] = {}
    for index, name in enumerate(names):
        group = node_groups[name]
        share = base + step if index < abs(remainder) else base
        count = group.min_count + share
        if count < 0:
            raise InvariantViolationError(
                f"node group {name!r} would shrink to {count} nodes "
                f"(current {group.min_count}, share {share})"
            )
        resized[name] = NodeGroupSize(min_count=count, max_count=count, instance_type=group.instance_type)
    return resized


def resize_set_actions(changes: NodeGroupSize, current: NodeGroupSize) -> list[str]:
    # Max must stay >= min at every step, so order depends on the direction of the resize.
    actions: list[str] = []
    if changes.max_count >= current.max_count:
        if changes.max_count != current.max_count:
            actions.append(f"spec.maxSize={changes.max_count}")
        if changes.min_count != current.min_count:
            actions.append(f"spec.minSize={changes.min_count}")
    else:
        if changes.min_count != current.min_count:
            actions.append(f"spec.minSize={changes.min_count}")
        if changes.max_count != current.max_count:
            actions.append(f"spec.maxSize={changes.max_count}")
    if changes.instance_type != current.instance_type:
        actions.append(f"spec.machineType={changes.instance_type}")
    return actions


@dataclass
class ClusterNodeMetadata:
    """Provisioner metadata kept on a cluster row as JSON.

    ``node_min_count``/``node_max_count`` are cluster-wide aggregates and
    ``node_groups`` holds the per-group breakdown the rebalancer works on.
    """

    version: str = ""
    ami: str = ""
    master_instance_type: str = ""
    master_count: int = 0
    node_instance_type: str = ""
    node_min_count: int = 0
    node_max_count: int = 0
    max_pods_per_node: int = 0
    networking: str = ""
    vpc: str = ""
    node_groups: dict[str, NodeGroupSize] = field(default_factory=dict)
    change_request: ClusterChangeRequest | None = None
    warnings: list[str] = field(default_factory=list)

    def validate_change_request(self) -> None:
        if self.change_request is None:
            raise RequestValidationError("cluster change request is not set", field="change_request")
        if self.change_request.is_empty():
            raise RequestValidationError(
                "cluster change request has no change values set", field="change_request"
            )

    def worker_node_resize_changes(self) -> dict[str, NodeGroupSize]:
        # Start from the current groups so untouched groups are still reported.
        self.validate_change_request()
        request = self.change_request
        assert request is not None
        changes = dict(self.node_groups)
        if request.node_instance_type:
            changes = {
                name: replace(group, instance_type=request.node_instance_type)
                for name, group in changes.items()
            }
        if request.node_min_count == 0:
            return changes
        return rebalance_node_groups(self.node_min_count, changes, request.node_min_count)

    def resize_actions(self, changes: Mapping[str, NodeGroupSize]) -> dict[str, list[str]]:
        actions: dict[str, list[str]] = {}
        for name in sorted(changes):
            current = self.node_groups.get(name)
            if current is None:
                raise InvariantViolationError(f"resize references unknown node group {name!r}")
            group_actions = resize_set_actions(changes[name], current)
            if group_actions:
                actions[name] = group_actions
        return actions

    def apply_change_request(self) -> None:
        # Only values that a metadata refresh from the provider does not report.
        if self.change_request is not None and self.change_request.node_max_count != 0:
            self.node_max_count = self.change_request.node_max_count

    def apply_node_group_changes(self, changes: Mapping[str, NodeGroupSize]) -> None:
        # Stand-in for the provider refresh once a resize has been carried out.
        if changes:
            self.node_groups = dict(changes)
            self.node_min_count = sum(group.min_count for group in changes.values())
        elif self.change_request is not None and self.change_request.node_min_count != 0:
            # No groups to rebalance; the aggregate still follows the request.
            self.node_min_count = self.change_request.node_min_count
        if self.change_request is not None and self.change_request.node_instance_type:
            self.node_instance_type = self.change_request.node_instance_type

    def clear_change_request(self) -> None:
        self.change_request = None

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def clear_warnings(self) -> None:
        self.warnings = []

    def to_json(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.change_request is None:
            payload.pop("change_request")
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> ClusterNodeMetadata:
        if not payload:
            return cls()
        data = dict(payload)
        groups = {
            name: NodeGroupSize(**group) for name, group in (data.pop("node_groups", None) or {}).items()
        }
        raw_request = data.pop("change_request", None)
        request = ClusterChangeRequest(**raw_request) if raw_request else None
        warnings = list(data.pop("warnings", None) or [])
        return cls(**data, node_groups=groups, change_request=request, warnings=warnings)
