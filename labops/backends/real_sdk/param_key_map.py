"""Generic scenario knob -> vendor SDK node name mapping."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from labops.core.errors import BackendError, JsonParseError
from labops.core.json_parser import parse_json

PARAM_KEY_MAP_ENV = "LABOPS_PARAM_KEY_MAP"
DEFAULT_MAP_PATH = Path(__file__).parent / "maps" / "param_key_map.json"


class ParamKeyMap:
    def __init__(self, mapping: Mapping[str, str]) -> None:
        if not mapping:
            raise BackendError("param key map must include at least one key mapping")
        self._mapping: Dict[str, str] = dict(mapping)

    def resolve(self, generic_key: str) -> Optional[str]:
        return self._mapping.get(generic_key)

    def __contains__(self, generic_key: object) -> bool:
        return generic_key in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    @classmethod
    def from_json_text(cls, text: str) -> "ParamKeyMap":
        root = parse_json(text)
        if not isinstance(root, dict):
            raise BackendError("param key map must start with '{'")
        mapping: Dict[str, str] = {}
        for key, value in root.items():
            if not key:
                raise BackendError("mapping key must not be empty")
            if not isinstance(value, str) or not value:
                raise BackendError(f"mapping value for key '{key}' must not be empty")
            mapping[key] = value
        return cls(mapping)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ParamKeyMap":
        if not str(path):
            raise BackendError("param key map path cannot be empty")
        map_path = Path(path)
        try:
            text = map_path.read_text(encoding="utf-8")
        except OSError as e:
            raise BackendError(f"failed to open param key map file: {map_path}") from e
        if not text.strip():
            raise BackendError(f"param key map file is empty: {map_path}")
        try:
            return cls.from_json_text(text)
        except (JsonParseError, BackendError) as e:
            raise BackendError(f"failed to parse param key map '{map_path}': {e}") from e


def resolve_param_key_map_path() -> Path:
    override = os.environ.get(PARAM_KEY_MAP_ENV, "")
    return Path(override) if override else DEFAULT_MAP_PATH


def load_param_key_map() -> ParamKeyMap:
    return ParamKeyMap.from_file(resolve_param_key_map_path())


__all__ = ["ParamKeyMap", "load_param_key_map", "resolve_param_key_map_path", "PARAM_KEY_MAP_ENV"]
