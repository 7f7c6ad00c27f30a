"""
Structured JSONL logging for aggregation runs.

A run log is one JSON object per line with script_name, run_id, level and
message, plus an optional structured payload (config digest, CRS info,
pixel counts, diagnostic region ids). Library versions are written once
when the log opens.

Library functions take an optional logger. Without one they fall back to the
stdlib logger named ``ntl_regions`` through ``log_event``.
"""

import importlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ntl_regions.paths import LOGS_DIR

LIBRARY_LOGGER_NAME = "ntl_regions"

# Libraries whose versions are recorded with every run
VERSIONED_LIBRARIES = [
    "geopandas",
    "pandas",
    "numpy",
    "rasterio",
    "rasterstats",
    "pyproj",
    "shapely",
]

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def generate_run_id() -> str:
    """UTC timestamp plus a short random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{uuid.uuid4().hex[:8]}"


def get_versions() -> dict[str, str]:
    """Python and library versions for reproducibility records."""
    versions = {"python": sys.version.split()[0]}
    for name in VERSIONED_LIBRARIES:
        try:
            module = importlib.import_module(name)
        except ImportError:
            continue
        versions[name] = getattr(module, "__version__", "unknown")
    return versions


class JSONLLogger:
    """
    Run logger writing JSONL records and mirroring messages to stdout.

    Usage:
        with JSONLLogger("viirs_nuts2") as logger:
            result = run_aggregation(raster, nuts2, logger=logger)
    """

    def __init__(
        self,
        script_name: str,
        run_id: Optional[str] = None,
        log_dir: Optional[Path] = None,
    ):
        """
        Args:
            script_name: Run name, used in the log filename
            run_id: Run identifier, generated when omitted
            log_dir: Directory for the log file, LOGS_DIR by default
        """
        self.script_name = script_name
        self.run_id = run_id or generate_run_id()
        self.log_dir = Path(log_dir) if log_dir is not None else LOGS_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"{script_name}_{self.run_id}.jsonl"
        self._file_handle = open(self.log_file, "a", encoding="utf-8")

        self._console_handler = logging.StreamHandler(sys.stdout)
        self._console_handler.setLevel(logging.INFO)
        self._console_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
        )
        self._logger = logging.getLogger(f"{LIBRARY_LOGGER_NAME}.{script_name}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.addHandler(self._console_handler)

        self._write_record("INFO", "Logger initialized", {
            "log_file": str(self.log_file),
            "versions": get_versions(),
        })

    def _write_record(self, level: str, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "script_name": self.script_name,
            "run_id": self.run_id,
            "level": level,
            "message": message,
        }
        if extra:
            record["extra"] = extra
        self._file_handle.write(json.dumps(record, default=str) + "\n")
        self._file_handle.flush()

    def log(self, level: str, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        """Write a record at level ('debug', 'info', 'warning', 'error') and echo it."""
        self._write_record(level.upper(), message, extra)
        self._logger.log(LEVELS[level], message)

    def debug(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self.log("debug", message, extra)

    def info(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self.log("info", message, extra)

    def warning(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self.log("warning", message, extra)

    def error(self, message: str, extra: Optional[dict[str, Any]] = None) -> None:
        self.log("error", message, extra)

    # Structured records (file only)

    def log_config(self, config: dict[str, Any], config_digest: Optional[str] = None) -> None:
        self._write_record("INFO", "Configuration loaded", {"config": config, "config_digest": config_digest})

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self._write_record("INFO", "Metrics recorded", {"metrics": metrics})

    def log_crs_info(self, crs_info: dict[str, Any]) -> None:
        self._write_record("INFO", "CRS info recorded", {"crs_info": crs_info})

    def log_raster_stats(self, raster_stats: dict[str, Any]) -> None:
        self._write_record("INFO", "Raster stats recorded", {"raster_stats": raster_stats})

    def log_diagnostics(self, diagnostics: dict[str, Any]) -> None:
        """Region ids that were zero-filled, failed or flagged during the run."""
        self._write_record("INFO", "Diagnostics recorded", {"diagnostics": diagnostics})

    def close(self) -> None:
        if self._file_handle.closed:
            return
        self._write_record("INFO", "Logger closing")
        self._file_handle.close()
        self._logger.removeHandler(self._console_handler)

    def __enter__(self) -> "JSONLLogger":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.error(
                f"Run aborted: {exc_type.__name__}: {exc_val}",
                extra={"exception_type": exc_type.__name__},
            )
        self.close()


def log_event(
    logger: Optional[JSONLLogger],
    level: str,
    message: str,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """
    Route a message to a JSONLLogger, or to the stdlib library logger.

    Args:
        logger: JSONLLogger instance or None
        level: One of 'debug', 'info', 'warning', 'error'
        message: Human-readable message
        extra: Structured payload (JSONL only)
    """
    if logger is not None:
        logger.log(level, message, extra=extra)
        return
    logging.getLogger(LIBRARY_LOGGER_NAME).log(LEVELS[level], message)
