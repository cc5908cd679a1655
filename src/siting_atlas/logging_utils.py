"""
Structured run logging.

Each run gets a run_id shared by its log file, export and metadata sidecar.
Records go to the console and to logs/<script>_<run_id>.jsonl, one JSON
object per line:

    {"timestamp": ..., "run_id": ..., "level": ..., "logger": ...,
     "message": ..., "event_type": ..., "context": {...}}

`event_type` is one of logger_init, step_start, step_end, qa_check,
rule_outcome, output_written.
"""

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from siting_atlas.paths import ensure_dir, paths


PACKAGE = "siting_atlas"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"


def generate_run_id() -> str:
    """Return a new run ID of the form run_YYYYMMDD_HHMMSS_<hex8>."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"run_{timestamp}_{uuid.uuid4().hex[:8]}"


_RUN_ID: str | None = None


def get_run_id() -> str:
    """Run ID of this process, generated on first use."""
    global _RUN_ID
    if _RUN_ID is None:
        _RUN_ID = generate_run_id()
    return _RUN_ID


class JSONLineFormatter(logging.Formatter):
    """Render a record as one JSON object tagged with the run ID."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "run_id": self.run_id,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry["context"] = getattr(record, "context", {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_logger(
    script_name: str,
    run_id: str | None = None,
    console_level: int = logging.INFO,
    log_dir: Path | None = None,
) -> logging.Logger:
    """
    Return the logger for one script run.

    Console output is at `console_level`; the JSONL file receives DEBUG
    and up. Calling again with the same script and run returns the same
    logger without adding handlers.

    Args:
        script_name: Name of the script (e.g. "run_siting_analysis").
        run_id: Run ID; defaults to get_run_id().
        console_level: Console threshold.
        log_dir: Directory for the JSONL file; defaults to paths.logs.
    """
    run_id = run_id or get_run_id()
    logger = logging.getLogger(f"{script_name}.{run_id}")
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console)

    log_file = ensure_dir(log_dir or paths.logs) / f"{script_name}_{run_id}.jsonl"
    jsonl = logging.FileHandler(log_file, encoding="utf-8", delay=True)
    jsonl.setLevel(logging.DEBUG)
    jsonl.setFormatter(JSONLineFormatter(run_id))
    logger.addHandler(jsonl)

    log_event(logger, logging.INFO, f"Logger initialized for {script_name}", "logger_init",
              script_name=script_name, log_file=log_file)
    return logger


def attach_package_logging(logger: logging.Logger, package: str = PACKAGE) -> None:
    """
    Send records from the package's module loggers to `logger`'s handlers.

    Library modules log through logging.getLogger(__name__). Handlers from
    an earlier run in the same process are detached first, so each record
    lands in the current run's log only.
    """
    package_logger = logging.getLogger(package)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.DEBUG)
    for handler in logger.handlers:
        package_logger.addHandler(handler)


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    event_type: str,
    **context: Any
) -> None:
    """Log `message` with an event type and context for the JSONL file."""
    logger.log(level, message, extra={"event_type": event_type, "context": context})


def log_step_start(logger: logging.Logger, step_name: str, **context: Any) -> None:
    log_event(logger, logging.INFO, f"Starting: {step_name}", "step_start",
              step_name=step_name, **context)


def log_step_end(logger: logging.Logger, step_name: str, **context: Any) -> None:
    log_event(logger, logging.INFO, f"Completed: {step_name}", "step_end",
              step_name=step_name, **context)


def log_qa_check(
    logger: logging.Logger,
    check_name: str,
    passed: bool,
    details: str | None = None,
    **context: Any
) -> None:
    """
    Log a QA check result.

    A failed check is a WARNING: geometry QA flags problems for review but
    never stops a run on its own.
    """
    status = "PASSED" if passed else "FAILED"
    message = f"QA Check [{check_name}]: {status}"
    if details:
        message += f" - {details}"

    log_event(logger, logging.INFO if passed else logging.WARNING, message, "qa_check",
              check_name=check_name, passed=passed, details=details, **context)


def log_rule_outcome(
    logger: logging.Logger,
    rule_name: str,
    kind: str,
    status: str,
    area: float | None = None,
    reason: str | None = None,
    **context: Any
) -> None:
    """
    Log the outcome of evaluating one exclusion rule.

    Unevaluated rules log at WARNING so skipped criteria stand out.
    """
    if status == "evaluated":
        level = logging.INFO
        message = f"Rule [{rule_name}] ({kind}): excludes {area:,.1f} sq units"
    else:
        level = logging.WARNING
        message = f"Rule [{rule_name}] ({kind}): UNEVALUATED - {reason}"

    log_event(logger, level, message, "rule_outcome",
              rule_name=rule_name, kind=kind, status=status,
              area=area, reason=reason, **context)


def log_output_written(
    logger: logging.Logger,
    output_path: str | Path,
    feature_count: int | None = None,
    **context: Any
) -> None:
    message = f"Output written: {output_path}"
    if feature_count is not None:
        message += f" ({feature_count:,} features)"

    log_event(logger, logging.INFO, message, "output_written",
              output_path=str(output_path), feature_count=feature_count, **context)
