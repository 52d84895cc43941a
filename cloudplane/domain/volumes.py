from __future__ import annotations

from dataclasses import asdict, dataclass, replace
import re
from typing import Any, Mapping

from cloudplane.core.errors import RequestValidationError


VOLUME_TYPE_SECRET = "secret"

VOLUME_NAME_MIN_LEN = 3
VOLUME_NAME_MAX_LEN = 64
_VOLUME_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


@dataclass(frozen=True)
class Volume:
    type: str
    backing_secret: str
    mount_path: str
    read_only: bool = False

    def validate(self, name: str = "") -> None:
        if self.type != VOLUME_TYPE_SECRET:
            raise RequestValidationError(f"{self.type} is an invalid volume type", field="type", value=self.type)
        if not self.mount_path:
            raise RequestValidationError(f"volume {name} mount path is empty", field="mount_path")


def validate_volume_name(name: str) -> None:
    if len(name) < VOLUME_NAME_MIN_LEN or len(name) > VOLUME_NAME_MAX_LEN:
        raise RequestValidationError(
            f"volume {name!r} is invalid: volume names must be between "
            f"{VOLUME_NAME_MIN_LEN} and {VOLUME_NAME_MAX_LEN} characters long",
            field="name",
            value=name,
        )
    if not _VOLUME_NAME_RE.match(name):
        raise RequestValidationError(
            f"volume {name!r} is invalid: volumes must start with a letter and can contain "
            "only lowercase letters, numbers or '_', '-' characters",
            field="name",
            value=name,
        )


class VolumeMap(dict[str, Volume]):
    """Named volumes mounted into an installation; mount paths are unique."""

    def validate(self) -> None:
        mount_paths: dict[str, str] = {}
        for name in sorted(self):
            volume = self[name]
            volume.validate(name)
            if volume.mount_path in mount_paths:
                raise RequestValidationError(
                    f"mount path {volume.mount_path} conflicts with volume {mount_paths[volume.mount_path]}",
                    field="mount_path",
                    value=volume.mount_path,
                )
            mount_paths[volume.mount_path] = name

    def _mount_path_owner(self, mount_path: str, *, exclude: str | None = None) -> str | None:
        for name, existing in self.items():
            if name != exclude and existing.mount_path == mount_path:
                return name
        return None

    def add(self, name: str, volume: Volume) -> None:
        # All checks run before the map is touched.
        if name in self:
            raise RequestValidationError(f"cannot create new volume, {name} already exists", field="name", value=name)
        validate_volume_name(name)
        volume.validate(name)
        conflict = self._mount_path_owner(volume.mount_path)
        if conflict is not None:
            raise RequestValidationError(
                f"mount path {volume.mount_path} conflicts with volume {conflict}",
                field="mount_path",
                value=volume.mount_path,
            )
        self[name] = volume

    def patch(self, name: str, *, mount_path: str | None = None, read_only: bool | None = None) -> str:
        volume = self.get(name)
        if volume is None:
            raise RequestValidationError(f"cannot update volume {name} as it doesn't exist", field="name", value=name)
        if mount_path is not None:
            conflict = self._mount_path_owner(mount_path, exclude=name)
            if conflict is not None:
                raise RequestValidationError(
                    f"mount path {mount_path} conflicts with volume {conflict}",
                    field="mount_path",
                    value=mount_path,
                )
            volume = replace(volume, mount_path=mount_path)
        if read_only is not None:
            volume = replace(volume, read_only=read_only)
        self[name] = volume
        return volume.backing_secret

    def to_volume_specs(self) -> list[dict[str, Any]]:
        # Sorted by name to keep rendered manifests stable.
        return [
            {"name": name, "secret": {"secretName": name}} for name in sorted(self)
        ]

    def to_volume_mounts(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "mountPath": self[name].mount_path, "readOnly": self[name].read_only}
            for name in sorted(self)
        ]

    def to_json(self) -> dict[str, dict[str, Any]]:
        return {name: asdict(self[name]) for name in sorted(self)}

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> VolumeMap:
        return cls({name: Volume(**raw) for name, raw in (payload or {}).items()})
