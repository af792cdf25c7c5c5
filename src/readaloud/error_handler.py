"""
ReadAloud Centralized Error Handling and Exception Management
"""
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .logging_utils import setup_logger

logger = setup_logger("readaloud.error_handler", "logs/readaloud.log")


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for error tracking"""
    component: str
    operation: str
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class ErrorHandler:
    """Centralized error reporting with a bounded history for diagnostics"""

    def __init__(self, max_history_size: int = 500):
        self.error_count = 0
        self.error_history: List[Dict[str, Any]] = []
        self.max_history_size = max_history_size

    def handle_error(self, error: BaseException, context: ErrorContext, severity: ErrorSeverity = ErrorSeverity.MEDIUM) -> Dict[str, Any]:
        """Log an error with context and severity and record it in the history"""
        error_id = f"ERR_{int(time.time() * 1000000)}"
        self.error_count += 1

        error_details = {
            'error_id': error_id,
            'type': error.__class__.__name__,
            'message': str(error),
            'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            'context': {
                'component': context.component,
                'operation': context.operation,
                'session_id': context.session_id,
                'metadata': context.metadata,
            },
            'severity': severity.value,
            'timestamp': context.timestamp.isoformat(),
            'count': self.error_count,
        }

        self._log_error(error_details, severity)
        self._add_to_history(error_details)
        return error_details

    def _log_error(self, error_details: Dict[str, Any], severity: ErrorSeverity) -> None:
        component = error_details['context']['component']
        operation = error_details['context']['operation']
        log_message = (
            f"[{error_details['error_id']}] {component}.{operation} "
            f"{error_details['type']}: {error_details['message']}"
        )

        if severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, extra={'error_details': error_details})
        elif severity == ErrorSeverity.HIGH:
            logger.error(log_message, extra={'error_details': error_details})
        elif severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message, extra={'error_details': error_details})
        else:
            logger.info(log_message, extra={'error_details': error_details})

    def _add_to_history(self, error_details: Dict[str, Any]) -> None:
        self.error_history.append(error_details)
        if len(self.error_history) > self.max_history_size:
            self.error_history = self.error_history[-self.max_history_size:]

    def get_error_stats(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for error in self.error_history[-100:]:
            counts[error['type']] = counts.get(error['type'], 0) + 1
        return {
            'total_errors': self.error_count,
            'recent_errors': len(self.error_history),
            'error_types': counts,
        }

    def clear_error_history(self) -> None:
        self.error_history.clear()
        self.error_count = 0


def get_error_handler() -> ErrorHandler:
    """Get or create error handler instance"""
    if not hasattr(get_error_handler, '_instance'):
        get_error_handler._instance = ErrorHandler()
    return get_error_handler._instance


def handle_error(error: BaseException, component: str, operation: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM, **context_kwargs) -> Dict[str, Any]:
    """Convenience function to handle errors"""
    context = ErrorContext(component=component, operation=operation, **context_kwargs)
    return get_error_handler().handle_error(error, context, severity)


@contextmanager
def error_context(component: str, operation: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM):
    """Record and re-raise any exception raised inside the block"""
    try:
        yield
    except Exception as e:
        handle_error(e, component, operation, severity)
        raise


class ReadAloudException(Exception):
    """Base exception for ReadAloud-specific errors"""

    def __init__(self, message: str, component: str = "unknown", operation: str = "unknown", **kwargs):
        super().__init__(message)
        self.component = component
        self.operation = operation
        self.context = kwargs


class ConfigurationError(ReadAloudException, ValueError):
    """Configuration-related errors"""
    pass


class AudioDecodeError(ReadAloudException):
    """Rendered audio could not be decoded into a playable buffer"""
    pass


class AudioOutputError(ReadAloudException):
    """The audio output device or stream is unavailable"""
    pass


class SynthesisError(ReadAloudException):
    """The text-to-speech engine failed"""
    pass


class RecognitionError(ReadAloudException):
    """The speech recognition channel failed to start or run"""
    pass


class PlaybackError(ReadAloudException):
    """Playback engine misuse, e.g. speaking on a closed engine"""
    pass
