# Utils package
from .logging_utils import setup_logging, get_logger, LogTimer
from .identity import daemon_identity, utc_now, to_naive_utc

__all__ = ['setup_logging', 'get_logger', 'LogTimer', 'daemon_identity', 'utc_now', 'to_naive_utc']
