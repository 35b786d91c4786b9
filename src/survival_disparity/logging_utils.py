"""
JSONL structured logging utilities.

Every pipeline stage logs to the console and to one JSONL file per run
(logs/<stage>_<run_id>.jsonl). Each JSON line carries:
- timestamp
- run_id (unique per execution)
- level
- event type and context, when the record was emitted through log_event()
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from survival_disparity.paths import paths, ensure_dir


def generate_run_id() -> str:
    """
    Generate a unique run ID.

    Format: YYYYMMDD_HHMMSS_<short_uuid>
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid.uuid4().hex[:8]}"


# =============================================================================
# JSONL Handler
# =============================================================================

class JSONLHandler(logging.Handler):
    """A logging handler that appends structured JSON lines to a file."""

    def __init__(self, log_path: Path, run_id: str):
        super().__init__()
        self.log_path = log_path
        self.run_id = run_id
        self._file = None

    def _ensure_file(self):
        if self._file is None:
            ensure_dir(self.log_path.parent)
            self._file = open(self.log_path, "a", encoding="utf-8")

    def emit(self, record: logging.LogRecord):
        try:
            self._ensure_file()

            entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "run_id": self.run_id,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            if hasattr(record, "event_type"):
                entry["event_type"] = record.event_type
            if hasattr(record, "context"):
                entry["context"] = record.context
            if record.exc_info:
                entry["exception"] = self.format(record)

            self._file.write(json.dumps(entry, default=str) + "\n")
            self._file.flush()

        except Exception:
            self.handleError(record)

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
        super().close()


# =============================================================================
# Logger setup
# =============================================================================

_LOGGERS: dict[str, logging.Logger] = {}
_RUN_ID: str | None = None


def get_run_id() -> str:
    """Get the current run ID, generating one if needed."""
    global _RUN_ID
    if _RUN_ID is None:
        _RUN_ID = generate_run_id()
    return _RUN_ID


def set_run_id(run_id: str) -> None:
    """Set a specific run ID (useful for testing or continuation)."""
    global _RUN_ID
    _RUN_ID = run_id


def get_logger(
    stage_name: str,
    run_id: str | None = None,
    log_dir: Path | str | None = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Get or create a logger for a pipeline stage.

    Creates both console and JSONL file handlers.

    Args:
        stage_name: Name of the stage or script (e.g., "01_estimate_disparity").
        run_id: Optional run ID; if None, generates or reuses the current one.
        log_dir: Directory for the JSONL file. Defaults to paths.logs.
        console_level: Logging level for console output.
        file_level: Logging level for JSONL output.

    Returns:
        Configured Logger instance.
    """
    if run_id is None:
        run_id = get_run_id()
    else:
        set_run_id(run_id)

    logger_key = f"{stage_name}_{run_id}"
    if logger_key in _LOGGERS:
        return _LOGGERS[logger_key]

    logger = logging.getLogger(logger_key)
    logger.setLevel(min(console_level, file_level))
    logger.handlers = []
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    logger.addHandler(console_handler)

    log_dir = Path(log_dir) if log_dir is not None else paths.logs
    jsonl_handler = JSONLHandler(log_dir / f"{stage_name}_{run_id}.jsonl", run_id)
    jsonl_handler.setLevel(file_level)
    logger.addHandler(jsonl_handler)

    _LOGGERS[logger_key] = logger

    log_event(logger, logging.INFO, f"Logger initialized for {stage_name}", "logger_init",
              stage_name=stage_name, run_id=run_id)

    return logger


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    event_type: str,
    **context: Any
) -> None:
    """Log a structured event with type and context."""
    logger.log(level, message, extra={
        "event_type": event_type,
        "context": context
    })


def log_step_start(logger: logging.Logger, step_name: str, **context: Any) -> None:
    """Log the start of a processing step."""
    log_event(logger, logging.INFO, f"Starting: {step_name}", "step_start",
              step_name=step_name, **context)


def log_step_end(logger: logging.Logger, step_name: str, **context: Any) -> None:
    """Log the end of a processing step."""
    log_event(logger, logging.INFO, f"Completed: {step_name}", "step_end",
              step_name=step_name, **context)


def log_qa_check(
    logger: logging.Logger,
    check_name: str,
    passed: bool,
    details: str | None = None,
    **context: Any
) -> None:
    """Log a QA check result; failures are logged at ERROR."""
    status = "PASSED" if passed else "FAILED"
    message = f"QA Check [{check_name}]: {status}"
    if details:
        message += f" - {details}"

    log_event(logger, logging.INFO if passed else logging.ERROR, message, "qa_check",
              check_name=check_name, passed=passed, details=details, **context)


def log_sampler_diagnostics(logger: logging.Logger, diagnostics: Any) -> None:
    """
    Log MCMC diagnostics for one fitted imputation.

    Problems are logged at WARNING so they are visible on the console
    even when the run continues.
    """
    problems = diagnostics.problems()
    level = logging.WARNING if problems else logging.INFO
    message = f"Sampler diagnostics [imputation {diagnostics.imputation}]: "
    message += "; ".join(problems) if problems else "OK"

    log_event(logger, level, message, "sampler_diagnostics", **diagnostics.to_dict())


def log_output_written(
    logger: logging.Logger,
    output_path: str | Path,
    row_count: int | None = None,
    **context: Any
) -> None:
    """Log that an output file was written."""
    message = f"Output written: {output_path}"
    if row_count is not None:
        message += f" ({row_count:,} rows)"

    log_event(logger, logging.INFO, message, "output_written",
              output_path=str(output_path), row_count=row_count, **context)
