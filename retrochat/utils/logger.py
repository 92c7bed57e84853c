import logging
import os

LOG_DIR_ENV = "RETROCHAT_LOG_DIR"


def setup_logger(name='retrochat', log_file='retrochat.log'):
    """Set up a logger with console and file output.

    Creates a logger that writes:
    - INFO and above to console
    - DEBUG and above to file (<log dir>/<log_file>)

    The log directory comes from ``RETROCHAT_LOG_DIR`` and defaults to
    ``logs`` next to the package. Calling this twice for the same name
    returns the already configured logger.

    Args:
        name (str, optional): Logger name. Defaults to 'retrochat'
        log_file (str, optional): File name inside the log directory

    Returns:
        logging.Logger: Configured logger instance

    Side Effects:
        - Creates log directory if it doesn't exist
        - Creates/appends to the log file
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.INFO)
    logger.addHandler(console_handler)

    log_dir = os.environ.get(LOG_DIR_ENV) or os.path.join(os.path.dirname(os.path.dirname(__file__)), 'logs')
    os.makedirs(log_dir, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(log_dir, log_file))
    file_handler.setFormatter(formatter)
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)

    # Child loggers propagate to the root by default; avoid double console output.
    logger.propagate = False
    return logger
