# logging_config.py
# --- Configuration for application-wide logging ---

import logging
from logging.handlers import RotatingFileHandler
import os

LOG_FILENAME = 'scorm_packager.log'


def setup_logging(logger, log_dir=None, console=True):
    """
    Configures a rotating file logger plus console output for the given logger.
    Used by both the Flask app (app.logger) and the console tool.
    """
    if getattr(logger, '_scorm_packager_configured', False):
        return logger

    # Create a logs directory if it doesn't exist
    log_dir = log_dir or os.environ.get('LOG_DIR', 'logs')
    os.makedirs(log_dir, exist_ok=True)

    log_file = os.path.join(log_dir, LOG_FILENAME)

    # A new log file is started at 5MB; the last 5 files are kept.
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=5,
        encoding='utf-8',
    )

    # Example: 2023-10-27 10:30:00,500 - INFO - [in /app/course_tools.py:123] - Log message here
    log_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [in %(pathname)s:%(lineno)d] - %(message)s'
    )
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.INFO)

    logger.addHandler(file_handler)
    logger.setLevel(logging.INFO)

    # The console tool prints its own step lines and skips this handler.
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(log_formatter)
        logger.addHandler(console_handler)

    logger._scorm_packager_configured = True
    logger.info('Logging has been successfully configured.')
    return logger
