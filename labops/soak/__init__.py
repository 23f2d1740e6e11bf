from .checkpoint_store import (
    CHECKPOINT_FILENAME,
    FRAME_CACHE_FILENAME,
    CheckpointState,
    CheckpointStatus,
    append_frame_cache,
    checkpoint_paths,
    load_checkpoint,
    load_frame_cache,
    write_checkpoint_artifacts,
    write_checkpoint_json,
)

__all__ = [
    "CHECKPOINT_FILENAME",
    "FRAME_CACHE_FILENAME",
    "CheckpointState",
    "CheckpointStatus",
    "append_frame_cache",
    "checkpoint_paths",
    "load_checkpoint",
    "load_frame_cache",
    "write_checkpoint_artifacts",
    "write_checkpoint_json",
]
