from __future__ import annotations

from dataclasses import replace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cloudplane.core.errors import RequestValidationError
from cloudplane.domain.env import EnvVar, EnvVarMap, clear_or_patch
from cloudplane.domain.rebalance import ClusterChangeRequest, ClusterNodeMetadata
from cloudplane.domain.requests import (
    INSTALLATION_SIZES,
    valid_cluster_version,
    validate_webhook_url,
)
from cloudplane.domain.volumes import VolumeMap


def present(patch: BaseModel, name: str) -> bool:
    # Present means explicitly supplied with a value; omitted fields and nulls are absent.
    return name in patch.model_fields_set and getattr(patch, name) is not None


def _set_if_changed(target: Any, attribute: str, value: Any) -> bool:
    if getattr(target, attribute) == value:
        return False
    setattr(target, attribute, value)
    return True


class _PatchModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def validate_patch(self) -> None:
        raise NotImplementedError

    def is_empty(self) -> bool:
        return not any(present(self, name) for name in type(self).model_fields)


class PatchInstallationRequest(_PatchModel):
    version: str | None = None
    image: str | None = None
    size: str | None = None
    license: str | None = None
    env: dict[str, EnvVar] | None = None

    def validate_patch(self) -> None:
        if present(self, "version") and not self.version:
            raise RequestValidationError("provided version update value was blank", field="version")
        if present(self, "image") and not self.image:
            raise RequestValidationError("provided image update value was blank", field="image")
        if present(self, "size") and self.size not in INSTALLATION_SIZES:
            raise RequestValidationError(f"invalid size {self.size}", field="size", value=self.size)
        if present(self, "env"):
            EnvVarMap(self.env or {}).validate_patch()

    def apply(self, installation: Any) -> bool:
        self.validate_patch()
        changed = False
        for name in ("version", "image", "size", "license"):
            if present(self, name):
                changed = _set_if_changed(installation, name, getattr(self, name)) or changed
        if present(self, "env"):
            current = EnvVarMap.from_json(installation.env)
            merged, env_changed = clear_or_patch(current, self.env)
            if env_changed:
                installation.env = merged.to_json() if merged else None
                changed = True
        return changed


class PatchClusterRequest(_PatchModel):
    name: str | None = None
    allow_installations: bool | None = None

    def validate_patch(self) -> None:
        if present(self, "name") and not self.name.strip():
            raise RequestValidationError("cluster name cannot be blank", field="name")

    def apply(self, cluster: Any) -> bool:
        self.validate_patch()
        changed = False
        if present(self, "name"):
            changed = _set_if_changed(cluster, "name", self.name) or changed
        if present(self, "allow_installations"):
            changed = _set_if_changed(cluster, "allow_installations", self.allow_installations) or changed
        return changed


def _record_change_request(metadata: ClusterNodeMetadata, changes: ClusterChangeRequest) -> bool:
    # Re-submitting the pending change request converges instead of reporting a change.
    if changes.is_empty() or metadata.change_request == changes:
        return False
    metadata.change_request = changes
    return True


class PatchUpgradeClusterRequest(_PatchModel):
    version: str | None = None
    ami: str | None = Field(default=None, alias="kops-ami")

    def validate_patch(self) -> None:
        if present(self, "version") and not valid_cluster_version(self.version):
            raise RequestValidationError(
                f"unsupported cluster version {self.version}", field="version", value=self.version
            )

    def apply(self, metadata: ClusterNodeMetadata) -> bool:
        self.validate_patch()
        changes = ClusterChangeRequest()
        if present(self, "version") and self.version != metadata.version:
            changes = replace(changes, version=self.version)
        if present(self, "ami") and self.ami != metadata.ami:
            changes = replace(changes, ami=self.ami)
        return _record_change_request(metadata, changes)


class PatchClusterSizeRequest(_PatchModel):
    node_instance_type: str | None = Field(default=None, alias="node-instance-type")
    node_min_count: int | None = Field(default=None, alias="node-min-count")
    node_max_count: int | None = Field(default=None, alias="node-max-count")

    def validate_patch(self) -> None:
        if present(self, "node_instance_type") and not self.node_instance_type:
            raise RequestValidationError("node instance type cannot be a blank value", field="node_instance_type")
        if present(self, "node_min_count") and self.node_min_count < 1:
            raise RequestValidationError(
                "node min count has to be 1 or greater", field="node_min_count", value=self.node_min_count
            )
        if (
            present(self, "node_min_count")
            and present(self, "node_max_count")
            and self.node_max_count < self.node_min_count
        ):
            raise RequestValidationError(
                f"node max count ({self.node_max_count}) can't be less than min count ({self.node_min_count})",
                field="node_max_count",
                value=self.node_max_count,
            )

    def apply(self, metadata: ClusterNodeMetadata) -> bool:
        self.validate_patch()
        changes = ClusterChangeRequest()
        if present(self, "node_instance_type") and self.node_instance_type != metadata.node_instance_type:
            changes = replace(changes, node_instance_type=self.node_instance_type)
        if present(self, "node_min_count") and self.node_min_count != metadata.node_min_count:
            changes = replace(changes, node_min_count=self.node_min_count)
        if present(self, "node_max_count") and self.node_max_count != metadata.node_max_count:
            changes = replace(changes, node_max_count=self.node_max_count)
        return _record_change_request(metadata, changes)


class PatchInstallationVolumeRequest(_PatchModel):
    mount_path: str | None = None
    read_only: bool | None = None

    def validate_patch(self) -> None:
        if present(self, "mount_path") and not self.mount_path:
            raise RequestValidationError("mount path cannot be blank", field="mount_path")

    def apply(self, installation: Any, volume_name: str) -> bool:
        self.validate_patch()
        volumes = VolumeMap.from_json(installation.volumes)
        before = volumes.get(volume_name)
        volumes.patch(
            volume_name,
            mount_path=self.mount_path if present(self, "mount_path") else None,
            read_only=self.read_only if present(self, "read_only") else None,
        )
        if volumes[volume_name] == before:
            return False
        installation.volumes = volumes.to_json()
        return True


class PatchSubscriptionRequest(_PatchModel):
    name: str | None = None
    url: str | None = None
    failure_threshold_s: int | None = None

    def validate_patch(self) -> None:
        if present(self, "name") and not self.name.strip():
            raise RequestValidationError("subscription name cannot be blank", field="name")
        if present(self, "url"):
            validate_webhook_url(self.url)
        if present(self, "failure_threshold_s") and self.failure_threshold_s < 0:
            raise RequestValidationError(
                "failure threshold cannot be negative",
                field="failure_threshold_s",
                value=self.failure_threshold_s,
            )

    def apply(self, subscription: Any) -> bool:
        self.validate_patch()
        changed = False
        if present(self, "name"):
            changed = _set_if_changed(subscription, "name", self.name) or changed
        if present(self, "url"):
            changed = _set_if_changed(subscription, "url", self.url) or changed
        if present(self, "failure_threshold_s"):
            changed = (
                _set_if_changed(subscription, "failure_threshold_ms", self.failure_threshold_s * 1000)
                or changed
            )
        return changed
