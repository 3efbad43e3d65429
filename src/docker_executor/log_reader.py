"""Reads the log files a deployment container drops into ``<state>/logs``."""

from pathlib import Path

import structlog

from docker_executor.models import LogEntry

logger = structlog.get_logger()

LOGS_DIRECTORY_NAME = "logs"


def read_deployment_logs(directory: Path) -> list[LogEntry]:
    """Read all ``*.log`` files in the order they were written.

    Files are ordered by last-write time, ties broken by name. A missing
    ``logs`` directory yields no entries.
    """
    logs_dir = Path(directory) / LOGS_DIRECTORY_NAME
    if not logs_dir.is_dir():
        return []

    log_files = sorted(
        (p for p in logs_dir.glob("*.log") if p.is_file()),
        key=lambda p: (p.stat().st_mtime_ns, p.name),
    )

    entries = []
    for log_file in log_files:
        logger.debug("reading_deployment_log", path=str(log_file))
        entries.append(
            LogEntry(
                file_name=log_file.name,
                content=log_file.read_text(encoding="utf-8", errors="replace"),
            )
        )
    return entries
