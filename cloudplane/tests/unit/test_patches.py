from __future__ import annotations

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from cloudplane.core.errors import RequestValidationError
from cloudplane.domain.env import EnvVar
from cloudplane.domain.patches import (
    PatchClusterRequest,
    PatchClusterSizeRequest,
    PatchInstallationRequest,
    PatchInstallationVolumeRequest,
    PatchSubscriptionRequest,
    PatchUpgradeClusterRequest,
    present,
)
from cloudplane.domain.rebalance import ClusterChangeRequest, ClusterNodeMetadata, NodeGroupSize


def _installation(**overrides):
    values = {
        "version": "9.5.0",
        "image": "mattermost/mattermost-enterprise-edition",
        "size": "1000users",
        "license": "",
        "env": {"EXISTING": {"value": "yes"}},
        "volumes": {
            "config": {"type": "secret", "backing_secret": "config", "mount_path": "/config", "read_only": True}
        },
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_presence_treats_explicit_null_as_omitted() -> None:
    # Explicit nulls count as absent, same as omitted fields.
    patch = PatchInstallationRequest.model_validate({"version": None, "image": "custom"})
    assert not present(patch, "version")
    assert present(patch, "image")
    assert not present(patch, "size")


def test_installation_patch_is_idempotent() -> None:
    # Applying the same patch twice reports a change only the first time.
    installation = _installation()
    patch = PatchInstallationRequest(version="9.6.0", size="miniSingleton")
    assert patch.apply(installation) is True
    snapshot = dict(vars(installation))
    assert patch.apply(installation) is False
    assert vars(installation) == snapshot
    assert installation.version == "9.6.0"
    assert installation.size == "miniSingleton"


def test_installation_patch_with_same_values_reports_no_change() -> None:
    # Present fields equal to the current values are not a change.
    installation = _installation()
    assert PatchInstallationRequest(version="9.5.0").apply(installation) is False


def test_installation_patch_validation_failure_leaves_entity_untouched() -> None:
    # Invalid patches are rejected before any field is written.
    installation = _installation()
    snapshot = dict(vars(installation))
    with pytest.raises(RequestValidationError):
        PatchInstallationRequest(version="9.7.0", size="enormous").apply(installation)
    with pytest.raises(RequestValidationError):
        PatchInstallationRequest(image="").apply(installation)
    with pytest.raises(RequestValidationError):
        PatchInstallationRequest(
            env={"BAD": EnvVar(value="x", value_from={"secretKeyRef": {"name": "s", "key": "k"}})}
        ).apply(installation)
    assert vars(installation) == snapshot


def test_installation_env_patch_merges_and_deletes() -> None:
    # Valued entries are upserted and valueless entries delete the key.
    installation = _installation(env={"KEEP": {"value": "1"}, "DROP": {"value": "2"}})
    patch = PatchInstallationRequest(env={"DROP": EnvVar(), "NEW": EnvVar(value="3")})
    assert patch.apply(installation) is True
    assert installation.env == {"KEEP": {"value": "1"}, "NEW": {"value": "3"}}
    assert patch.apply(installation) is False


def test_installation_env_patch_with_empty_map_clears() -> None:
    # An explicitly empty env map removes every override.
    installation = _installation()
    assert PatchInstallationRequest(env={}).apply(installation) is True
    assert installation.env is None
    assert PatchInstallationRequest(env={}).apply(installation) is False


def test_patch_models_reject_unknown_fields() -> None:
    # Typos in patch bodies are errors rather than silent no-ops.
    with pytest.raises(ValidationError):
        PatchInstallationRequest.model_validate({"verison": "1"})


def test_patch_is_empty() -> None:
    # A patch with nothing present is empty.
    assert PatchInstallationRequest().is_empty()
    assert not PatchInstallationRequest(license="abc").is_empty()


def test_cluster_patch_name_and_allow_installations() -> None:
    # Plain cluster fields follow the same changed-then-unchanged contract.
    cluster = SimpleNamespace(name="old", allow_installations=True)
    patch = PatchClusterRequest(name="new", allow_installations=False)
    assert patch.apply(cluster) is True
    assert patch.apply(cluster) is False
    assert (cluster.name, cluster.allow_installations) == ("new", False)
    with pytest.raises(RequestValidationError):
        PatchClusterRequest(name="  ").apply(cluster)


def _metadata() -> ClusterNodeMetadata:
    return ClusterNodeMetadata(
        version="1.28.5",
        ami="ami-old",
        node_instance_type="m5.large",
        node_min_count=4,
        node_max_count=4,
        node_groups={"ng1": NodeGroupSize(2, 2, "m5.large"), "ng2": NodeGroupSize(2, 2, "m5.large")},
    )


def test_size_patch_records_change_request_once() -> None:
    # Only differing values land in the change request; repeats converge.
    metadata = _metadata()
    patch = PatchClusterSizeRequest.model_validate(
        {"node-min-count": 6, "node-max-count": 6, "node-instance-type": "m5.large"}
    )
    assert patch.apply(metadata) is True
    assert metadata.change_request == ClusterChangeRequest(node_min_count=6, node_max_count=6)
    assert patch.apply(metadata) is False


def test_size_patch_matching_current_values_is_no_change() -> None:
    # A resize to the current size does not create a change request.
    metadata = _metadata()
    assert PatchClusterSizeRequest(node_min_count=4).apply(metadata) is False
    assert metadata.change_request is None


@pytest.mark.parametrize(
    "payload",
    [
        {"node-min-count": 0},
        {"node-min-count": 5, "node-max-count": 4},
        {"node-instance-type": ""},
    ],
)
def test_size_patch_validation(payload: dict) -> None:
    # Invalid sizes fail without recording a change request.
    metadata = _metadata()
    with pytest.raises(RequestValidationError):
        PatchClusterSizeRequest.model_validate(payload).apply(metadata)
    assert metadata.change_request is None


def test_upgrade_patch_records_version_and_ami() -> None:
    # Upgrade patches use the same change-request mechanism.
    metadata = _metadata()
    patch = PatchUpgradeClusterRequest.model_validate({"version": "1.29.1", "kops-ami": "ami-new"})
    assert patch.apply(metadata) is True
    assert metadata.change_request == ClusterChangeRequest(version="1.29.1", ami="ami-new")
    assert patch.apply(metadata) is False


def test_upgrade_patch_rejects_bad_version() -> None:
    # Versions must look like major.minor.patch or "latest".
    with pytest.raises(RequestValidationError):
        PatchUpgradeClusterRequest(version="one.two").apply(_metadata())


def test_volume_patch_updates_mount_and_read_only() -> None:
    # Volume patches change only the supplied attributes.
    installation = _installation()
    patch = PatchInstallationVolumeRequest(mount_path="/etc/config", read_only=False)
    assert patch.apply(installation, "config") is True
    assert installation.volumes["config"]["mount_path"] == "/etc/config"
    assert installation.volumes["config"]["read_only"] is False
    assert patch.apply(installation, "config") is False


def test_volume_patch_unknown_volume_fails() -> None:
    # Patching a volume that is not mounted is a validation error.
    with pytest.raises(RequestValidationError):
        PatchInstallationVolumeRequest(read_only=True).apply(_installation(), "missing")


def test_subscription_patch_converts_threshold_to_ms() -> None:
    # Thresholds are supplied in seconds and stored in milliseconds.
    subscription = SimpleNamespace(name="hook", url="https://example.com/hook", failure_threshold_ms=0)
    patch = PatchSubscriptionRequest(failure_threshold_s=30, url="https://example.com/new")
    assert patch.apply(subscription) is True
    assert subscription.failure_threshold_ms == 30_000
    assert patch.apply(subscription) is False
    with pytest.raises(RequestValidationError):
        PatchSubscriptionRequest(url="ftp://example.com").apply(subscription)
    with pytest.raises(RequestValidationError):
        PatchSubscriptionRequest(failure_threshold_s=-1).apply(subscription)
