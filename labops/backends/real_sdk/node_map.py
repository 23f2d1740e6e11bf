"""In-memory stand-in for a vendor GenICam-style node map."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

NodeValue = Union[bool, int, float, str]


class NodeValueType(Enum):
    BOOL = "bool"
    INT64 = "int64"
    FLOAT64 = "float64"
    STRING = "string"
    ENUMERATION = "enumeration"


@dataclass
class NumericRange:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class NodeDefinition:
    value_type: NodeValueType
    value: NodeValue
    numeric_range: Optional[NumericRange] = None
    enum_values: List[str] = field(default_factory=list)


class NodeWriteError(ValueError):
    """Node rejected a write."""


class InMemoryNodeMap:
    def __init__(self) -> None:
        self._nodes: Dict[str, NodeDefinition] = {}

    def upsert(self, key: str, definition: NodeDefinition) -> None:
        self._nodes[key] = definition

    def has(self, key: str) -> bool:
        return key in self._nodes

    def get_type(self, key: str) -> Optional[NodeValueType]:
        node = self._nodes.get(key)
        return node.value_type if node else None

    def get(self, key: str) -> NodeValue:
        return self._nodes[key].value

    def list_keys(self) -> List[str]:
        return sorted(self._nodes)

    def list_enum_values(self, key: str) -> List[str]:
        node = self._nodes.get(key)
        if node is None or node.value_type is not NodeValueType.ENUMERATION:
            return []
        return list(node.enum_values)

    def numeric_range(self, key: str) -> Optional[NumericRange]:
        node = self._nodes.get(key)
        if node is None or node.value_type not in (NodeValueType.INT64, NodeValueType.FLOAT64):
            return None
        return node.numeric_range

    def _node_for_write(self, key: str) -> NodeDefinition:
        node = self._nodes.get(key)
        if node is None:
            raise NodeWriteError(f"unknown node key: {key}")
        return node

    def _check_range(self, key: str, node: NodeDefinition, value: float) -> None:
        rng = node.numeric_range
        if rng is None:
            return
        if rng.min is not None and value < rng.min:
            raise NodeWriteError(f"value for key '{key}' is below minimum {rng.min}")
        if rng.max is not None and value > rng.max:
            raise NodeWriteError(f"value for key '{key}' is above maximum {rng.max}")

    def set_bool(self, key: str, value: bool) -> None:
        node = self._node_for_write(key)
        if node.value_type is not NodeValueType.BOOL:
            raise NodeWriteError(f"type mismatch for key '{key}': expected bool")
        node.value = bool(value)

    def set_int(self, key: str, value: int) -> None:
        node = self._node_for_write(key)
        if node.value_type is not NodeValueType.INT64:
            raise NodeWriteError(f"type mismatch for key '{key}': expected int64")
        self._check_range(key, node, float(value))
        node.value = int(value)

    def set_float(self, key: str, value: float) -> None:
        node = self._node_for_write(key)
        if node.value_type is not NodeValueType.FLOAT64:
            raise NodeWriteError(f"type mismatch for key '{key}': expected float64")
        if not math.isfinite(value):
            raise NodeWriteError(f"value for key '{key}' must be finite")
        self._check_range(key, node, value)
        node.value = float(value)

    def set_string(self, key: str, value: str) -> None:
        node = self._node_for_write(key)
        if node.value_type is NodeValueType.STRING:
            node.value = value
            return
        if node.value_type is not NodeValueType.ENUMERATION:
            raise NodeWriteError(f"type mismatch for key '{key}': expected string/enum")
        if value not in node.enum_values:
            raise NodeWriteError(f"value '{value}' is not supported for key '{key}'")
        node.value = value


def _float_node(value: float, low: float, high: float) -> NodeDefinition:
    return NodeDefinition(NodeValueType.FLOAT64, value, NumericRange(low, high))


def _int_node(value: int, low: float, high: float) -> NodeDefinition:
    return NodeDefinition(NodeValueType.INT64, value, NumericRange(low, high))


def _enum_node(value: str, allowed: List[str]) -> NodeDefinition:
    return NodeDefinition(NodeValueType.ENUMERATION, value, enum_values=allowed)


def create_default_node_map() -> InMemoryNodeMap:
    node_map = InMemoryNodeMap()
    node_map.upsert("ExposureTime", _float_node(1200.0, 5.0, 10_000_000.0))
    node_map.upsert("Gain", _float_node(0.0, 0.0, 48.0))
    node_map.upsert("PixelFormat", _enum_node("mono8", ["mono8", "mono12", "rgb8"]))
    node_map.upsert("RegionOfInterest", NodeDefinition(NodeValueType.STRING, ""))
    node_map.upsert("Width", _int_node(1920, 64, 4096))
    node_map.upsert("Height", _int_node(1080, 64, 2160))
    node_map.upsert("OffsetX", _int_node(0, 0, 4095))
    node_map.upsert("OffsetY", _int_node(0, 0, 2159))
    node_map.upsert("GevSCPSPacketSize", _int_node(1500, 576, 9000))
    node_map.upsert("GevSCPD", _int_node(0, 0, 100_000))
    node_map.upsert("TriggerMode", _enum_node("free_run", ["free_run", "software", "hardware"]))
    node_map.upsert("TriggerSource", _enum_node("line0", ["line0", "line1", "software"]))
    node_map.upsert(
        "TriggerActivation",
        _enum_node("rising_edge", ["rising_edge", "falling_edge", "any_edge"]),
    )
    node_map.upsert("AcquisitionFrameRate", _float_node(30.0, 1.0, 240.0))
    return node_map


__all__ = [
    "InMemoryNodeMap",
    "NodeDefinition",
    "NodeValueType",
    "NodeWriteError",
    "NumericRange",
    "create_default_node_map",
]
