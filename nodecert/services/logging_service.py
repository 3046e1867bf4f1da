"""
Logging and operation tracking for the node certificate tool.
"""
import json
import logging
import logging.handlers
import sys
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
from contextlib import contextmanager
import threading


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    process_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


@dataclass
class OperationMetric:
    """Timing of one lifecycle operation."""
    operation: str
    duration_ms: float
    timestamp: str
    success: bool
    error_message: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


@dataclass
class ErrorMetric:
    """Error tracking metric data structure."""
    error_type: str
    error_message: str
    timestamp: str
    stack_trace: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            process_id=record.process,
            extra_data=getattr(record, 'extra_data', None)
        )

        if record.exc_info:
            log_entry.exception_info = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class OperationMonitor:
    """Times lifecycle operations and keeps their outcome."""

    def __init__(self):
        self.metrics: List[OperationMetric] = []
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure_operation(self, operation: str, extra_data: Optional[Dict[str, Any]] = None):
        """Context manager to measure an operation."""
        start_time = time.time()
        success = True
        error_message = None

        try:
            yield
        except Exception as e:
            success = False
            error_message = str(e)
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000

            metric = OperationMetric(
                operation=operation,
                duration_ms=duration_ms,
                timestamp=datetime.now().isoformat(),
                success=success,
                error_message=error_message,
                extra_data=extra_data
            )

            with self.lock:
                self.metrics.append(metric)

            self.logger.info(
                f"Operation {operation} finished in {duration_ms:.0f} ms",
                extra={
                    'extra_data': {
                        'operation': operation,
                        'duration_ms': duration_ms,
                        'success': success,
                        'error_message': error_message,
                        **(extra_data if extra_data else {})
                    }
                }
            )

    def get_metrics(self, operation: Optional[str] = None) -> List[OperationMetric]:
        """Get operation metrics, optionally for one operation only."""
        with self.lock:
            metrics = self.metrics.copy()
        if operation:
            metrics = [m for m in metrics if m.operation == operation]
        return metrics


class ErrorTracker:
    """Error tracking and analysis."""

    def __init__(self):
        self.errors: List[ErrorMetric] = []
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def track_error(self, error: Exception, extra_data: Optional[Dict[str, Any]] = None):
        """Track an error occurrence."""
        error_metric = ErrorMetric(
            error_type=type(error).__name__,
            error_message=str(error),
            timestamp=datetime.now().isoformat(),
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            extra_data=extra_data
        )

        with self.lock:
            self.errors.append(error_metric)

        self.logger.error(
            f"{error_metric.error_type}: {error_metric.error_message}",
            extra={
                'extra_data': {
                    'error_type': error_metric.error_type,
                    'error_message': error_metric.error_message,
                    **(extra_data if extra_data else {})
                }
            }
        )

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary statistics."""
        with self.lock:
            errors = self.errors.copy()

        error_types: Dict[str, int] = {}
        for error in errors:
            error_types[error.error_type] = error_types.get(error.error_type, 0) + 1

        return {
            'total_errors': len(errors),
            'error_types': error_types,
        }


class LoggingService:
    """Configures logging for a tool run and tracks operations and errors."""

    def __init__(self, config):
        """Initialize logging service with configuration."""
        self.config = config
        self.operation_monitor = OperationMonitor()
        self.error_tracker = ErrorTracker()
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.debug("Logging service initialized")

    def _setup_logging(self):
        """Setup console and optional rotating JSON file logging."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        console_handler.setLevel(log_level)
        root_logger.addHandler(console_handler)

        if self.config.log_file_path:
            Path(self.config.log_file_path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=self.config.log_file_path,
                maxBytes=5 * 1024 * 1024,  # 5MB
                backupCount=3,
                encoding='utf-8'
            )
            file_handler.setFormatter(JSONFormatter())
            file_handler.setLevel(log_level)
            root_logger.addHandler(file_handler)

    def measure_operation(self, operation: str, extra_data: Optional[Dict[str, Any]] = None):
        """Get operation measurement context manager."""
        return self.operation_monitor.measure_operation(operation, extra_data)

    def track_error(self, error: Exception, extra_data: Optional[Dict[str, Any]] = None):
        """Track an error occurrence."""
        self.error_tracker.track_error(error, extra_data)
