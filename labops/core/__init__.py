from .errors import LabOpsError
from .exit_codes import ExitCode
from .logging_utils import get_module_logger
from .time_utils import CaptureClock, format_utc_timestamp

__all__ = [
    'LabOpsError',
    'ExitCode',
    'get_module_logger',
    'CaptureClock',
    'format_utc_timestamp',
]
