"""Transport counters pulled out of a backend config dump."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence

RESEND_ALIASES = (
    "transport.resends", "transport_resends", "device.transport_resends",
    "gevresendpacketcount", "gevresendcount", "streamresendcount", "resendpacketcount",
)
PACKET_ERROR_ALIASES = (
    "transport.packet_errors", "transport_packet_errors", "device.transport_packet_errors",
    "gevpacketerrorcount", "streampacketerrorcount", "packeterrorcount", "transporterrorcount",
)
DROPPED_PACKET_ALIASES = (
    "transport.dropped_packets", "transport_dropped_packets", "device.transport_dropped_packets",
    "gevdroppedpacketcount", "streamdroppedpacketcount", "droppedpacketcount",
    "transportdroppedcount",
)


@dataclass
class TransportCounterReading:
    available: bool = False
    value: Optional[int] = None
    source_key: str = ""

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {"available": self.available}
        if self.available:
            data["value"] = self.value
            data["source_key"] = self.source_key
        return data


@dataclass
class TransportCountersSnapshot:
    resends: TransportCounterReading = field(default_factory=TransportCounterReading)
    packet_errors: TransportCounterReading = field(default_factory=TransportCounterReading)
    dropped_packets: TransportCounterReading = field(default_factory=TransportCounterReading)

    def to_dict(self) -> Dict[str, object]:
        return {
            "resends": self.resends.to_dict(),
            "packet_errors": self.packet_errors.to_dict(),
            "dropped_packets": self.dropped_packets.to_dict(),
        }


def _parse_unsigned(text: str) -> Optional[int]:
    trimmed = text.strip()
    if not trimmed or not trimmed.isdigit():
        return None
    return int(trimmed)


def _resolve(dump: Mapping[str, str], aliases: Sequence[str]) -> TransportCounterReading:
    for key, raw in dump.items():
        if key.lower() not in aliases:
            continue
        value = _parse_unsigned(raw)
        if value is None:
            continue
        return TransportCounterReading(available=True, value=value, source_key=key)
    return TransportCounterReading()


def collect_transport_counters(dump: Mapping[str, str]) -> TransportCountersSnapshot:
    return TransportCountersSnapshot(
        resends=_resolve(dump, RESEND_ALIASES),
        packet_errors=_resolve(dump, PACKET_ERROR_ALIASES),
        dropped_packets=_resolve(dump, DROPPED_PACKET_ALIASES),
    )


__all__ = [
    "TransportCounterReading",
    "TransportCountersSnapshot",
    "collect_transport_counters",
]
