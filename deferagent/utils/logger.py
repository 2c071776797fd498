"""
Logger setup module for the deferral agent.
Provides functions to configure logging based on the managed DiagnosticLog setting.
"""
import os
import sys
import logging
import logging.handlers
import tempfile
from typing import Optional, Tuple

PACKAGE_LOGGER_NAME = 'deferagent'
DEFAULT_CONSOLE_LEVEL_NAME = 'INFO'
DEFAULT_FILE_LEVEL_NAME = 'DEBUG'
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
SYSLOG_FORMAT = '%(name)s[%(process)d]: %(levelname)s - %(message)s'
SYSLOG_SOCKETS = ('/var/run/syslog', '/dev/log')


def _get_log_level(level_name: str, default_level: int = logging.INFO) -> int:
    """
    Convert log level string to logging level constant.

    :param level_name: Name of the log level (e.g., 'DEBUG')
    :type level_name: str
    :param default_level: Default level to use if level_name is invalid
    :type default_level: int
    :return: The corresponding logging level constant
    :rtype: int
    """
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        return level
    logging.warning(f"Invalid log level name '{level_name}'. Using default level {logging.getLevelName(default_level)}.")
    return default_level


def _check_directory_writable(directory_path: str) -> Tuple[bool, str]:
    """
    Check if a directory exists and is writable by the current process.

    :param directory_path: Path to the directory to check
    :type directory_path: str
    :return: Tuple (is_writable, message)
    :rtype: Tuple[bool, str]
    """
    if not directory_path:
        return False, "Directory path is empty"

    try:
        os.makedirs(directory_path, exist_ok=True)
    except PermissionError as e:
        return False, f"Permission denied creating directory {directory_path}: {e}"
    except OSError as e:
        return False, f"Error creating directory {directory_path}: {e}"

    if not os.path.isdir(directory_path):
        return False, f"{directory_path} exists but is not a directory"

    if not os.access(directory_path, os.W_OK):
        return False, f"Directory {directory_path} is not writable"
    return True, f"Directory {directory_path} is writable"


def _get_fallback_log_directory() -> str:
    """
    Get a fallback directory for the diagnostic log when /var/log is not writable.

    :return: Path to a fallback directory for logging
    :rtype: str
    """
    fallback_dir = os.path.join(tempfile.gettempdir(), "install-or-defer", "logs")
    os.makedirs(fallback_dir, exist_ok=True)
    return fallback_dir


def _build_syslog_handler() -> Optional[logging.Handler]:
    """
    Creates a handler that writes to the local system log, or None if no syslog socket exists.

    :return: Configured SysLogHandler or None
    :rtype: Optional[logging.Handler]
    """
    for socket_path in SYSLOG_SOCKETS:
        if os.path.exists(socket_path):
            try:
                return logging.handlers.SysLogHandler(address=socket_path)
            except OSError as e:
                logging.getLogger(PACKAGE_LOGGER_NAME).debug(f"Could not open syslog socket {socket_path}: {e}")
    return None


def _build_file_handler(log_file_path: str, max_bytes: int, backup_count: int,
                        logger: logging.Logger) -> Optional[logging.Handler]:
    """
    Creates a rotating file handler, falling back to a temp directory when the
    requested directory cannot be written.
    """
    log_dir = os.path.dirname(log_file_path) or os.getcwd()
    is_writable, msg = _check_directory_writable(log_dir)
    if not is_writable:
        try:
            fallback_path = os.path.join(_get_fallback_log_directory(), os.path.basename(log_file_path))
        except OSError as e:
            logger.error(f"Cannot use specified log directory ({msg}) and no fallback is available: {e}")
            return None
        logger.warning(f"Cannot use specified log directory: {msg}. Falling back to {fallback_path}")
        log_file_path = fallback_path

    try:
        return logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
    except OSError as e:
        logger.error(f"Failed to set up file logging to {log_file_path}: {e}")
        return None


def setup_logger(
    name: str = PACKAGE_LOGGER_NAME,
    log_format: str = DEFAULT_LOG_FORMAT,
    console_level_name: str = DEFAULT_CONSOLE_LEVEL_NAME,
    file_level_name: str = DEFAULT_FILE_LEVEL_NAME,
    log_file_path: Optional[str] = None,
    use_syslog: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Sets up and configures the package logger.

    Every module obtains a child of this logger through :func:`get_logger`, so
    configuring it once per invocation routes all agent output to the same
    destinations. Calling it again replaces the previous handlers, which lets
    the CLI start with console-only logging and switch to the diagnostic log
    once configuration has been read.

    :param name: The name for the logger
    :type name: str
    :param log_format: The format string for console and file messages
    :type log_format: str
    :param console_level_name: Logging level for console output
    :type console_level_name: str
    :param file_level_name: Logging level for the diagnostic file or syslog
    :type file_level_name: str
    :param log_file_path: Path to the diagnostic log file. If None, file logging is disabled
    :type log_file_path: Optional[str]
    :param use_syslog: Whether to copy output to the system log
    :type use_syslog: bool
    :param max_bytes: Maximum size of the log file before rotation
    :type max_bytes: int
    :param backup_count: Number of backup log files to keep
    :type backup_count: int
    :return: The configured logger instance
    :rtype: logging.Logger
    """
    logger = logging.getLogger(name)
    console_level = _get_log_level(console_level_name, logging.INFO)
    file_level = _get_log_level(file_level_name, logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    lowest_level = console_level

    if log_file_path:
        file_handler = _build_file_handler(log_file_path, max_bytes, backup_count, logger)
        if file_handler is not None:
            file_handler.setLevel(file_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            lowest_level = min(lowest_level, file_level)
            logger.debug(f"File logging enabled to: {file_handler.baseFilename}")
        else:
            logger.warning("File logging requested but could not be set up. Logging to console only.")
    elif use_syslog:
        syslog_handler = _build_syslog_handler()
        if syslog_handler is not None:
            syslog_handler.setLevel(file_level)
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
            logger.addHandler(syslog_handler)
            lowest_level = min(lowest_level, file_level)
        else:
            logger.debug("No system log socket available. Logging to console only.")

    logger.setLevel(lowest_level)
    return logger


def get_logger(name: str = PACKAGE_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger that reports through the package logger.

    :param name: The dotted module name, usually ``__name__``
    :type name: str
    :return: The logger instance
    :rtype: logging.Logger
    """
    if name != PACKAGE_LOGGER_NAME and not name.startswith(PACKAGE_LOGGER_NAME + '.'):
        name = f"{PACKAGE_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
