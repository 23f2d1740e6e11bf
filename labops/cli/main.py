"""``labops`` command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional, Sequence

from labops import __version__
from labops.artifacts import write_kb_draft
from labops.backends import list_backend_statuses
from labops.backends.real_sdk import enumerate_connected_devices, is_real_backend_enabled, real_backend_status
from labops.backends.real_sdk.error_mapper import map_real_failure
from labops.backends.webcam import enumerate_webcam_devices
from labops.core.errors import BackendError, LabOpsError, ScenarioError, SelectorError
from labops.core.exit_codes import ExitCode
from labops.core.logging_config import LOG_LEVEL_CHOICES, configure_logging, parse_log_level
from labops.core.logging_utils import get_module_logger
from labops.orchestrator import DEFAULT_CHECKPOINT_INTERVAL_MS, RunOptions, execute_run, validate_scenario_path
from labops.scenarios import validate_scenario_file

logger = get_module_logger("Cli")

ENABLED_MARK = "✅"
DISABLED_MARK = "⚠️"


def log_level_arg(value: str) -> int:
    try:
        return parse_log_level(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def positive_millis_arg(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed <= 0:
        raise argparse.ArgumentTypeError("checkpoint interval must be a positive integer milliseconds value")
    return parsed


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        type=log_level_arg,
        default="info",
        metavar=f"<{LOG_LEVEL_CHOICES}>",
        help="Logging verbosity for stderr (and --log-file)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this rotating file",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labops", description="Camera lab run tooling")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    run = subparsers.add_parser("run", help="Execute a scenario and write a run bundle")
    run.add_argument("scenario", help="Scenario JSON file")
    run.add_argument("--out", dest="output_dir", default="out", help="Output root for run bundles")
    run.add_argument("--zip", dest="zip_bundle", action="store_true", help="Also write <run_id>.zip")
    run.add_argument("--redact", action="store_true", help="Redact host/user identifiers in hostprobe.json")
    run.add_argument("--device", dest="device_selector", default="", help="Device selector (key:value,...)")
    run.add_argument("--sdk-log", dest="sdk_log", action="store_true", help="Capture sdk_log.txt (real backend)")
    run.add_argument("--soak", action="store_true", help="Stream in checkpointed chunks that can pause and resume")
    run.add_argument(
        "--checkpoint-interval-ms",
        type=positive_millis_arg,
        default=None,
        help=f"Soak checkpoint interval (default {DEFAULT_CHECKPOINT_INTERVAL_MS})",
    )
    run.add_argument("--resume", dest="resume_checkpoint", default="", help="Resume from soak_checkpoint.json")
    run.add_argument(
        "--soak-stop-file", dest="soak_stop_file", default="", help="Pause the soak run when this file exists"
    )
    _add_logging_arguments(run)

    list_backends = subparsers.add_parser("list-backends", help="Show backend availability")
    list_backends.add_argument("extra", nargs="*", help=argparse.SUPPRESS)

    list_devices = subparsers.add_parser("list-devices", help="Enumerate connected devices")
    list_devices.add_argument("--backend", required=True, choices=("real", "webcam"))
    _add_logging_arguments(list_devices)

    validate = subparsers.add_parser("validate", help="Check a scenario file against the schema")
    validate.add_argument("paths", nargs="*", help="Scenario JSON file")

    kb_draft = subparsers.add_parser("kb-draft", help="Draft a KB article from a run bundle")
    kb_draft.add_argument("--run", dest="run_folder", required=True, help="Run bundle directory")
    kb_draft.add_argument("--out", dest="output_path", default=None, help="Output markdown path")

    version = subparsers.add_parser("version", help="Print the labops version")
    version.add_argument("extra", nargs="*", help=argparse.SUPPRESS)

    return parser


# ---------------------------------------------------------------------------
# Commands


def _soak_usage_error(args: argparse.Namespace) -> Optional[str]:
    if args.soak or args.resume_checkpoint:
        return None
    if args.checkpoint_interval_ms is not None:
        return "--checkpoint-interval-ms requires --soak"
    if args.soak_stop_file:
        return "--soak-stop-file requires --soak"
    return None


def command_run(args: argparse.Namespace) -> int:
    usage_error = _soak_usage_error(args)
    if usage_error:
        print(f"error: {usage_error}", file=sys.stderr)
        return int(ExitCode.USAGE)
    interval_ms = args.checkpoint_interval_ms or DEFAULT_CHECKPOINT_INTERVAL_MS
    options = RunOptions(
        scenario_path=args.scenario,
        output_dir=args.output_dir,
        zip_bundle=args.zip_bundle,
        redact=args.redact,
        device_selector=args.device_selector,
        sdk_log=args.sdk_log,
        soak=args.soak or bool(args.resume_checkpoint),
        checkpoint_interval_ms=interval_ms,
        resume_checkpoint=args.resume_checkpoint,
        soak_stop_file=args.soak_stop_file,
    )
    outcome = asyncio.run(execute_run(options))
    return int(outcome.exit_code)


def command_list_backends(args: argparse.Namespace) -> int:
    if args.extra:
        print("error: list-backends does not accept arguments", file=sys.stderr)
        return int(ExitCode.USAGE)
    for name, available, status in list_backend_statuses():
        mark = ENABLED_MARK if available else DISABLED_MARK
        print(f"{name} {mark} {status}")
    return int(ExitCode.SUCCESS)


def _list_real_devices() -> int:
    if not is_real_backend_enabled():
        print(f"error: BACKEND_NOT_AVAILABLE: real backend {real_backend_status()}", file=sys.stderr)
        return int(ExitCode.FAILURE)
    try:
        devices = enumerate_connected_devices()
    except BackendError as e:
        mapped = map_real_failure("device_discovery", str(e))
        print(f"error: DEVICE_DISCOVERY_FAILED: {mapped.formatted_message}", file=sys.stderr)
        return int(ExitCode.FAILURE)

    print("backend: real")
    print("status: enabled")
    print(f"devices: {len(devices)}")
    if not devices:
        print("note: no cameras detected")
        print("hint: set LABOPS_REAL_DEVICE_FIXTURE to a descriptor CSV for local validation")
        return int(ExitCode.SUCCESS)
    for i, device in enumerate(devices):
        print(f"device[{i}].model: {device.model}")
        print(f"device[{i}].serial: {device.serial}")
        print(f"device[{i}].user_id: {device.user_id or '(none)'}")
        print(f"device[{i}].transport: {device.transport}")
        for label, value in (
            ("firmware_version", device.firmware_version),
            ("sdk_version", device.sdk_version),
            ("ip", device.ip_address),
            ("mac", device.mac_address),
        ):
            if value:
                print(f"device[{i}].{label}: {value}")
    return int(ExitCode.SUCCESS)


def _list_webcam_devices() -> int:
    try:
        devices = enumerate_webcam_devices(logger=logger)
    except (BackendError, SelectorError) as e:
        print(f"error: DEVICE_DISCOVERY_FAILED: {e}", file=sys.stderr)
        return int(ExitCode.FAILURE)

    print("backend: webcam")
    print(f"devices: {len(devices)}")
    if not devices:
        print("note: no webcams detected")
        print("hint: set LABOPS_WEBCAM_DEVICE_FIXTURE to a descriptor CSV for local validation")
        return int(ExitCode.SUCCESS)
    for i, device in enumerate(devices):
        print(f"device[{i}].id: {device.device_id}")
        print(f"device[{i}].friendly_name: {device.friendly_name}")
        if device.bus_info:
            print(f"device[{i}].bus_info: {device.bus_info}")
        if device.capture_index is not None:
            print(f"device[{i}].capture_index: {device.capture_index}")
    return int(ExitCode.SUCCESS)


def command_list_devices(args: argparse.Namespace) -> int:
    if args.backend == "real":
        return _list_real_devices()
    return _list_webcam_devices()


def command_validate(args: argparse.Namespace) -> int:
    if len(args.paths) != 1:
        print("error: validate requires exactly 1 argument: <scenario.json>", file=sys.stderr)
        return int(ExitCode.USAGE)
    path = args.paths[0]
    try:
        validate_scenario_path(path)
        report = validate_scenario_file(path)
    except ScenarioError as e:
        print(f"error: {e}", file=sys.stderr)
        return int(ExitCode.FAILURE)

    if not report.valid:
        print(f"invalid scenario: {path}", file=sys.stderr)
        for issue in report.issues:
            print(f"  - {issue.path}: {issue.message}", file=sys.stderr)
        return int(ExitCode.SCHEMA_INVALID)
    print(f"valid: {path}")
    return int(ExitCode.SUCCESS)


def command_kb_draft(args: argparse.Namespace) -> int:
    try:
        written = write_kb_draft(args.run_folder, args.output_path)
    except LabOpsError as e:
        print(f"error: failed to generate kb draft: {e}", file=sys.stderr)
        return int(ExitCode.FAILURE)
    print(f"kb_draft: {written}")
    print(f"source_run_folder: {args.run_folder}")
    return int(ExitCode.SUCCESS)


def command_version(args: argparse.Namespace) -> int:
    if args.extra:
        print("error: version does not accept arguments", file=sys.stderr)
        return int(ExitCode.USAGE)
    print(f"labops {__version__}")
    return int(ExitCode.SUCCESS)


_COMMANDS = {
    "run": command_run,
    "list-backends": command_list_backends,
    "list-devices": command_list_devices,
    "validate": command_validate,
    "kb-draft": command_kb_draft,
    "version": command_version,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    arg_list: List[str] = list(argv) if argv is not None else sys.argv[1:]
    try:
        args = parser.parse_args(arg_list)
    except SystemExit as e:
        # argparse exits 2 on usage errors and 0 for --help
        return int(e.code) if isinstance(e.code, int) else int(ExitCode.USAGE)

    if args.command is None:
        parser.print_usage(sys.stderr)
        return int(ExitCode.USAGE)

    log_level = getattr(args, "log_level", "info")
    configure_logging(log_level, force=True, log_file=getattr(args, "log_file", None))
    try:
        return _COMMANDS[args.command](args)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
