"""
rxsignature Logging System
Provides structured logging to separate files with automatic rotation.

Log Files:
- verification.log: Verification verdicts and per-reference scores
- enrollment.log: Enrollment and batch training events
- error.log: Errors, skipped references and exceptions

Loggers are created on first use, so importing the package never touches
the filesystem.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Dict, Any

from rxsignature.config import LOG_DIR, LOG_MAX_BYTES, LOG_BACKUP_COUNT, VERBOSE


# Log file names
VERIFICATION_LOG = "verification.log"
ENROLLMENT_LOG = "enrollment.log"
ERROR_LOG = "error.log"

# Log formats
DETAILED_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _create_rotating_handler(
    log_file: Path,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
    formatter_string: Optional[str] = None
) -> RotatingFileHandler:
    """
    Create a rotating file handler.

    Args:
        log_file: Path to the log file
        max_bytes: Max file size before rotation (default 10MB)
        backup_count: Number of backup files to keep (default 5)
        formatter_string: Log format string (default DETAILED_FORMAT)

    Returns:
        Configured RotatingFileHandler
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )

    formatter = logging.Formatter(formatter_string or DETAILED_FORMAT)
    handler.setFormatter(formatter)

    return handler


def _get_logger(name: str, log_file: str, level: int = logging.INFO) -> logging.Logger:
    """
    Get or create a logger with rotating file handler.

    Args:
        name: Logger name
        log_file: Log file name inside LOG_DIR
        level: Logging level (default INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)
    logger.propagate = False  # Don't propagate to root logger

    logger.addHandler(_create_rotating_handler(LOG_DIR / log_file))

    # Add console handler if verbose
    if VERBOSE:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(DETAILED_FORMAT))
        logger.addHandler(console)

    return logger


def verification_logger() -> logging.Logger:
    return _get_logger("rxsignature.verification", VERIFICATION_LOG)


def enrollment_logger() -> logging.Logger:
    return _get_logger("rxsignature.enrollment", ENROLLMENT_LOG)


def error_logger() -> logging.Logger:
    return _get_logger("rxsignature.error", ERROR_LOG, level=logging.WARNING)


# Convenience functions

def _format_details(details: Optional[Dict[str, Any]]) -> str:
    if not details:
        return ""
    return " - " + ", ".join(f"{k}={v}" for k, v in details.items())


def log_comparison(reference_id: str, confidence: int, is_match: bool,
                   details: Optional[Dict[str, Any]] = None):
    """
    Log one reference comparison.

    Args:
        reference_id: Reference being compared against
        confidence: Combined confidence (0-100)
        is_match: Whether the comparison cleared the threshold
        details: Additional details (hash/pixel scores, distance)
    """
    label = "MATCH" if is_match else "NO_MATCH"
    verification_logger().info(
        f"COMPARE {label} - reference={reference_id} confidence={confidence}{_format_details(details)}"
    )


def log_verification(result: str, confidence: int, reference_id: Optional[str],
                     details: Optional[Dict[str, Any]] = None):
    """
    Log a verification verdict.

    Args:
        result: ACCEPTED or REJECTED
        confidence: Best confidence (0-100)
        reference_id: Best-scoring reference id or None
        details: Additional details (threshold, document type, counts)
    """
    ref_info = f"reference={reference_id}" if reference_id else "reference=None"
    verification_logger().info(
        f"VERIFY {result} - {ref_info} confidence={confidence}{_format_details(details)}"
    )


def log_enrollment(operation: str, reference_id: Optional[str], result: str,
                   details: Optional[Dict[str, Any]] = None):
    """
    Log an enrollment event.

    Args:
        operation: Operation type (ENROLL, TRAIN, REPLACE)
        reference_id: Reference id or None for batch events
        result: SUCCESS, FAILURE, DUPLICATE, ...
        details: Additional details dict
    """
    ref_info = f"reference={reference_id}" if reference_id else "reference=None"
    enrollment_logger().info(f"{operation} {result} - {ref_info}{_format_details(details)}")


def log_warning(message: str):
    """Log a non-fatal operational problem."""
    error_logger().warning(message)


def log_error(error: BaseException, context: Optional[str] = None, reference_id: Optional[str] = None):
    """
    Log an error.

    Args:
        error: Exception object
        context: Where the error occurred (function name, phase)
        reference_id: Reference involved, if any
    """
    context_info = f" in {context}" if context else ""
    ref_info = f" reference={reference_id}" if reference_id else ""

    error_logger().error(
        f"{type(error).__name__}: {error}{context_info}{ref_info}",
        exc_info=(type(error), error, error.__traceback__)
    )
