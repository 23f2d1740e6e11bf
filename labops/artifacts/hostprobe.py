"""Best-effort host snapshot written as ``hostprobe.json``.

Fields that a platform cannot provide fall back to ``unknown``/zero/null;
only a failed write is an error. With redaction enabled, host and user
identifiers are replaced wherever they appear as whole tokens.
"""

from __future__ import annotations

import json
import os
import platform
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import psutil

from labops.core.atomic_write import atomic_write_text, ensure_output_dir
from labops.core.logging_utils import get_module_logger
from labops.core.time_utils import format_utc_timestamp, utc_now

logger = get_module_logger("HostProbe")

HOSTPROBE_FILENAME = "hostprobe.json"
REDACTED_HOST = "<redacted_host>"
REDACTED_USER = "<redacted_user>"


@dataclass
class NicInterface:
    name: str
    mac_address: Optional[str] = None
    ipv4_addresses: List[str] = field(default_factory=list)
    ipv6_addresses: List[str] = field(default_factory=list)
    is_up: Optional[bool] = None
    mtu: Optional[int] = None
    link_speed_hint: Optional[str] = None


@dataclass
class HostProbeSnapshot:
    captured_at: datetime
    os_name: str = "unknown"
    os_version: str = "unknown"
    cpu_model: str = "unknown"
    cpu_logical_cores: int = 0
    ram_total_bytes: int = 0
    uptime_seconds: int = 0
    load_avg_1m: Optional[float] = None
    load_avg_5m: Optional[float] = None
    load_avg_15m: Optional[float] = None
    interfaces: List[NicInterface] = field(default_factory=list)


@dataclass
class RedactionContext:
    hostname_tokens: List[str] = field(default_factory=list)
    username_tokens: List[str] = field(default_factory=list)


def _cpu_model() -> str:
    model = platform.processor()
    if not model and Path("/proc/cpuinfo").exists():
        try:
            for line in Path("/proc/cpuinfo").read_text(encoding="utf-8", errors="replace").splitlines():
                if line.lower().startswith("model name") and ":" in line:
                    model = line.split(":", 1)[1].strip()
                    break
        except OSError as e:
            logger.debug("cpuinfo read failed", error=e)
    return model or "unknown"


def _collect_interfaces() -> List[NicInterface]:
    try:
        addresses = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as e:
        logger.debug("interface probe failed", error=e)
        return []

    interfaces: List[NicInterface] = []
    for name in sorted(addresses):
        iface = NicInterface(name=name)
        for addr in addresses[name]:
            if addr.family == socket.AF_INET:
                iface.ipv4_addresses.append(addr.address)
            elif addr.family == socket.AF_INET6:
                iface.ipv6_addresses.append(addr.address.split("%", 1)[0])
            elif addr.family == psutil.AF_LINK:
                iface.mac_address = addr.address
        stat = stats.get(name)
        if stat is not None:
            iface.is_up = bool(stat.isup)
            iface.mtu = int(stat.mtu) if stat.mtu else None
            if stat.speed:
                iface.link_speed_hint = f"{stat.speed}Mb/s"
        interfaces.append(iface)
    return interfaces


def collect_host_probe(now: Optional[datetime] = None) -> HostProbeSnapshot:
    snapshot = HostProbeSnapshot(captured_at=now or utc_now())
    snapshot.os_name = platform.system() or "unknown"
    snapshot.os_version = platform.release() or "unknown"
    snapshot.cpu_model = _cpu_model()
    snapshot.cpu_logical_cores = psutil.cpu_count(logical=True) or 0
    snapshot.ram_total_bytes = int(psutil.virtual_memory().total)
    snapshot.uptime_seconds = max(0, int(time.time() - psutil.boot_time()))
    try:
        one, five, fifteen = psutil.getloadavg()
        snapshot.load_avg_1m, snapshot.load_avg_5m, snapshot.load_avg_15m = one, five, fifteen
    except (OSError, AttributeError) as e:
        logger.debug("load average unavailable", error=e)
    snapshot.interfaces = _collect_interfaces()
    return snapshot


def _add_token(tokens: List[str], value: Optional[str]) -> None:
    value = (value or "").strip()
    if value and value not in tokens:
        tokens.append(value)


def build_redaction_context(environ: Optional[Mapping[str, str]] = None) -> RedactionContext:
    env = os.environ if environ is None else environ
    context = RedactionContext()
    _add_token(context.hostname_tokens, env.get("HOSTNAME"))
    _add_token(context.hostname_tokens, env.get("COMPUTERNAME"))
    if environ is None:
        hostname = socket.gethostname()
        _add_token(context.hostname_tokens, hostname)
        _add_token(context.hostname_tokens, hostname.split(".", 1)[0])

    for key in ("USER", "USERNAME", "LOGNAME", "SUDO_USER"):
        _add_token(context.username_tokens, env.get(key))
    for key in ("HOME", "USERPROFILE"):
        home = env.get(key)
        if home:
            _add_token(context.username_tokens, Path(home).name)
    return context


def _is_token_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_-"


def replace_identifier_token(text: str, token: str, replacement: str) -> str:
    """Case-insensitive replace of ``token`` where it is not part of a longer word."""
    if not token or not text:
        return text
    lowered_token = token.lower()
    out: List[str] = []
    pos = 0
    lowered = text.lower()
    while True:
        found = lowered.find(lowered_token, pos)
        if found < 0:
            break
        end = found + len(token)
        left_ok = found == 0 or not _is_token_char(text[found - 1])
        right_ok = end >= len(text) or not _is_token_char(text[end])
        if left_ok and right_ok:
            out.append(text[pos:found])
            out.append(replacement)
        else:
            out.append(text[pos:end])
        pos = end
    out.append(text[pos:])
    return "".join(out)


def redact_text(text: str, context: RedactionContext) -> str:
    for token in context.hostname_tokens:
        text = replace_identifier_token(text, token, REDACTED_HOST)
    for token in context.username_tokens:
        text = replace_identifier_token(text, token, REDACTED_USER)
    return text


def _redact_list(values: Sequence[str], context: RedactionContext) -> List[str]:
    return [redact_text(v, context) for v in values]


def redact_snapshot(snapshot: HostProbeSnapshot, context: RedactionContext) -> HostProbeSnapshot:
    snapshot.os_name = redact_text(snapshot.os_name, context)
    snapshot.os_version = redact_text(snapshot.os_version, context)
    snapshot.cpu_model = redact_text(snapshot.cpu_model, context)
    for iface in snapshot.interfaces:
        iface.name = redact_text(iface.name, context)
        if iface.mac_address:
            iface.mac_address = redact_text(iface.mac_address, context)
        iface.ipv4_addresses = _redact_list(iface.ipv4_addresses, context)
        iface.ipv6_addresses = _redact_list(iface.ipv6_addresses, context)
    return snapshot


def snapshot_to_dict(snapshot: HostProbeSnapshot) -> Dict[str, Any]:
    return {
        "captured_at_utc": format_utc_timestamp(snapshot.captured_at),
        "os": {"name": snapshot.os_name, "version": snapshot.os_version},
        "cpu": {"model": snapshot.cpu_model, "logical_cores": snapshot.cpu_logical_cores},
        "ram_total_bytes": snapshot.ram_total_bytes,
        "uptime_seconds": snapshot.uptime_seconds,
        "load_avg": {
            "one_min": snapshot.load_avg_1m,
            "five_min": snapshot.load_avg_5m,
            "fifteen_min": snapshot.load_avg_15m,
        },
        "nic_highlights": {
            "interfaces": [
                {
                    "name": iface.name,
                    "mac_address": iface.mac_address,
                    "ipv4_addresses": iface.ipv4_addresses,
                    "ipv6_addresses": iface.ipv6_addresses,
                    "is_up": iface.is_up,
                    "mtu": iface.mtu,
                    "link_speed_hint": iface.link_speed_hint,
                }
                for iface in snapshot.interfaces
            ]
        },
    }


def write_hostprobe_json(
    snapshot: HostProbeSnapshot,
    output_dir: Union[str, Path],
    redact: bool = False,
    context: Optional[RedactionContext] = None,
) -> Path:
    if redact:
        snapshot = redact_snapshot(snapshot, context or build_redaction_context())
    text = json.dumps(snapshot_to_dict(snapshot), indent=2, ensure_ascii=False) + "\n"
    out_dir = ensure_output_dir(output_dir)
    return atomic_write_text(out_dir / HOSTPROBE_FILENAME, text)


__all__ = [
    "HOSTPROBE_FILENAME",
    "HostProbeSnapshot",
    "NicInterface",
    "RedactionContext",
    "build_redaction_context",
    "collect_host_probe",
    "redact_snapshot",
    "redact_text",
    "replace_identifier_token",
    "snapshot_to_dict",
    "write_hostprobe_json",
]
