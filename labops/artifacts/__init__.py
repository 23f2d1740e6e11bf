from .bundle_manifest import MANIFEST_FILENAME, write_bundle_manifest_json
from .bundle_registry import BundleArtifactRegistry
from .bundle_zip import write_bundle_zip
from .config_writers import (
    write_camera_config_json,
    write_config_report_markdown,
    write_config_verify_json,
)
from .hostprobe import collect_host_probe, write_hostprobe_json
from .kb_draft import write_kb_draft
from .run_writer import (
    RealDeviceMetadata,
    RunConfig,
    RunInfo,
    RunTimestamps,
    WebcamDeviceMetadata,
    write_run_json,
    write_scenario_json,
)
from .summary_writer import write_run_summary_markdown

__all__ = [
    "BundleArtifactRegistry",
    "MANIFEST_FILENAME",
    "RealDeviceMetadata",
    "RunConfig",
    "RunInfo",
    "RunTimestamps",
    "WebcamDeviceMetadata",
    "collect_host_probe",
    "write_bundle_manifest_json",
    "write_bundle_zip",
    "write_camera_config_json",
    "write_config_report_markdown",
    "write_config_verify_json",
    "write_hostprobe_json",
    "write_kb_draft",
    "write_run_json",
    "write_run_summary_markdown",
    "write_scenario_json",
]
