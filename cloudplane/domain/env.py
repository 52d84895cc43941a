from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from cloudplane.core.errors import RequestValidationError


class EnvVar(BaseModel):
    # A literal value or a reference to an external source (secret/config key), never both.
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    value: str = ""
    value_from: dict[str, Any] | None = Field(default=None, alias="valueFrom")

    def has_value(self) -> bool:
        return bool(self.value) or self.value_from is not None

    def validate_source(self, name: str = "") -> None:
        label = f"env var {name}" if name else "env var"
        if not self.has_value():
            raise RequestValidationError(f"{label}: no value or valueFrom is defined", field=name or None)
        if self.value and self.value_from is not None:
            raise RequestValidationError(
                f"{label}: value and valueFrom are mutually exclusive", field=name or None
            )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_defaults=True)


class EnvVarMap(dict[str, EnvVar]):
    """Environment variable overrides keyed by variable name."""

    def validate(self) -> None:
        for name in sorted(self):
            self[name].validate_source(name)

    def validate_patch(self) -> None:
        # Valueless entries are deletion markers in a patch; only reject ambiguous ones.
        for name in sorted(self):
            env = self[name]
            if env.value and env.value_from is not None:
                raise RequestValidationError(
                    f"env var {name}: value and valueFrom are mutually exclusive", field=name
                )

    def patch(self, new: Mapping[str, EnvVar] | None) -> bool:
        if new is None:
            return False
        changed = False
        for name, env in new.items():
            if name in self:
                if not env.has_value():
                    del self[name]
                    changed = True
                elif self[name] != env:
                    self[name] = env
                    changed = True
            elif env.has_value():
                self[name] = env
                changed = True
        return changed

    def to_env_list(self) -> list[dict[str, Any]]:
        # Sorted so an unchanged map never reorders container env and rotates pods.
        return [{"name": name, **self[name].to_json()} for name in sorted(self)]

    def to_json(self) -> dict[str, dict[str, Any]]:
        return {name: self[name].to_json() for name in sorted(self)}

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> EnvVarMap:
        result = cls()
        for name, raw in (payload or {}).items():
            result[name] = raw if isinstance(raw, EnvVar) else EnvVar.model_validate(raw)
        return result


def clear_or_patch(current: EnvVarMap | None, new: Mapping[str, EnvVar] | None) -> tuple[EnvVarMap | None, bool]:
    """Merge ``new`` into ``current`` and return ``(result, changed)``.

    An empty or missing ``new`` clears everything. An empty ``current`` is
    replaced wholesale by the entries of ``new`` that carry a value. Otherwise
    the key-level merge of ``EnvVarMap.patch`` applies.
    """
    if not new:
        return None, bool(current)
    if not current:
        replacement = EnvVarMap({name: env for name, env in new.items() if env.has_value()})
        if not replacement:
            return current, False
        return replacement, True
    merged = EnvVarMap(current)
    changed = merged.patch(new)
    return merged, changed
