import os
import sys
import logging
from logging.handlers import TimedRotatingFileHandler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _log_startup_error(msg):
    """Report errors that happen before logging is configured."""
    print(msg, file=sys.stderr)


def setup_logging(log_dir='user/logs', level='INFO', backup_count=30):
    """
    Configure the root logger: daily-rotated file plus stdout.

    Safe to call more than once; existing root handlers are replaced.
    """
    handlers = []
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            os.path.join(log_dir, 'amora.log'),
            when='midnight',
            interval=1,
            backupCount=backup_count
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)
    except OSError as e:
        _log_startup_error(f"File logging disabled, cannot open {log_dir}: {e}")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    # Request logging middleware already covers access lines
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    return root_logger
