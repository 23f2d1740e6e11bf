"""Threshold heuristics over real-device transport counters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from labops.backends.real_sdk.transport_counters import TransportCounterReading, TransportCountersSnapshot

RESEND_SPIKE_THRESHOLD = 50
PACKET_ERROR_THRESHOLD = 1
DROPPED_PACKET_THRESHOLD = 1


@dataclass(frozen=True)
class TransportAnomalyFinding:
    heuristic_id: str
    counter_name: str
    observed_value: int
    threshold: int
    summary: str


def _check(
    findings: List[TransportAnomalyFinding],
    heuristic_id: str,
    counter_name: str,
    reading: TransportCounterReading,
    threshold: int,
    summary_prefix: str,
) -> None:
    if not reading.available or reading.value is None or reading.value < threshold:
        return
    findings.append(
        TransportAnomalyFinding(
            heuristic_id=heuristic_id,
            counter_name=counter_name,
            observed_value=reading.value,
            threshold=threshold,
            summary=f"{summary_prefix} counter {reading.value} exceeded threshold {threshold}.",
        )
    )


def detect_transport_anomalies(counters: Optional[TransportCountersSnapshot]) -> List[TransportAnomalyFinding]:
    """Findings in fixed heuristic order; none when no real device was used."""
    findings: List[TransportAnomalyFinding] = []
    if counters is None:
        return findings
    _check(findings, "resend_spike_threshold", "resends", counters.resends,
           RESEND_SPIKE_THRESHOLD, "Transport anomaly: resend spike")
    _check(findings, "packet_error_threshold", "packet_errors", counters.packet_errors,
           PACKET_ERROR_THRESHOLD, "Transport anomaly: packet errors")
    _check(findings, "dropped_packet_threshold", "dropped_packets", counters.dropped_packets,
           DROPPED_PACKET_THRESHOLD, "Transport anomaly: dropped packets")
    return findings


__all__ = ["TransportAnomalyFinding", "detect_transport_anomalies"]
