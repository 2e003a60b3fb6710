from .atomic import AtomicBoolean, AtomicCounter
from .closer import Closer
from .log import config_file_logging, config_root_logger, log_uncaught_exceptions, validate_log_level
from .sighandler import SigHandler
from .timeout import run_with_timeout

__all__ = [
    "AtomicBoolean",
    "AtomicCounter",
    "Closer",
    "config_file_logging",
    "config_root_logger",
    "log_uncaught_exceptions",
    "validate_log_level",
    "SigHandler",
    "run_with_timeout",
]
