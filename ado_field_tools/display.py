"""
Console output, per-run audit log and operator confirmation.

Console output uses rich; every record is mirrored into a timestamped log
file so a run can be audited afterwards.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt
from rich.theme import Theme

from .log_sanitizer import sanitize_log_message
from .models import FieldCopyResult, QueryRewriteResult, WitdExportResult

logger = logging.getLogger(__name__)

LOG_FILE_PREFIX = "ado-field-tools"

LOGGING_THEME = Theme(
    {
        "logging.level.debug": "dim",
        "logging.level.info": "blue",
        "logging.level.warning": "bold yellow",
        "logging.level.error": "bold red",
        "logging.level.critical": "bold red on white",
    }
)

console = Console(theme=LOGGING_THEME, stderr=True)

# Signature of a confirmation capability: prompt text in, go/no-go out
Confirmation = Callable[[str], bool]


class SanitizingFilter(logging.Filter):
    """Redact credentials from every record before any handler formats it."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = sanitize_log_message(message)
        record.args = ()
        return True


def log_file_name(started_at: datetime) -> str:
    return f"{LOG_FILE_PREFIX}_{started_at.strftime('%Y-%m-%d_%H-%M-%S')}.log"


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = "logs",
    started_at: Optional[datetime] = None
) -> Optional[Path]:
    """
    Configure console logging with rich and a per-run log file.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the run's log file, or None for console only
        started_at: Run start time used in the log file name (default: now)

    Returns:
        Path of the run's log file, or None when file logging is off
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    sanitizer = SanitizingFilter()

    rich_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        markup=False,
        show_time=True,
        show_level=True,
        show_path=False,
        log_time_format="[%X]",
    )
    rich_handler.addFilter(sanitizer)
    handlers: list = [rich_handler]

    log_file = None
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / log_file_name(started_at or datetime.now())

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s"
        ))
        file_handler.setLevel(numeric_level)
        file_handler.addFilter(sanitizer)
        handlers.append(file_handler)

    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

    # The SDK and msrest are chatty at DEBUG
    logging.getLogger("msrest").setLevel(max(numeric_level, logging.WARNING))
    logging.getLogger("azure").setLevel(max(numeric_level, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(numeric_level, logging.WARNING))

    if log_file:
        logger.info(f"Run log file: {log_file}")

    return log_file


# ============================================================================
# Confirmation
# ============================================================================

def always_confirm(message: str) -> bool:
    """Confirmation used by non-interactive runs (--yes)."""
    logger.info(f"{message} Proceeding without confirmation.")
    return True


def console_confirm(message: str) -> bool:
    """Ask the operator to type 'yes' before a bulk write."""
    answer = Prompt.ask(f"{message} Type 'yes' to continue", console=console, default="no")
    confirmed = answer.strip().lower() == "yes"
    logger.info(f"Operator answered '{answer.strip()}' to: {message}")
    return confirmed


# ============================================================================
# Summaries
# ============================================================================

def log_copy_summary(result: FieldCopyResult) -> None:
    logger.info("=" * 60)
    logger.info("FIELD COPY SUMMARY" + (" (dry run)" if result.dry_run else ""))
    logger.info(f"  Work items found:   {result.found}")
    logger.info(f"  Work items planned: {result.planned}")
    logger.info(f"  Work items updated: {result.updated}")
    logger.info(f"  Work items skipped: {result.skipped}")
    log = logger.error if result.failed else logger.info
    log(f"  Work items failed:  {result.failed}")

    if result.missing_targets:
        logger.warning(
            f"  Work item types skipped, target field missing: {', '.join(result.missing_target_types)}"
        )
        for missing in result.missing_targets:
            logger.warning(f"    {missing.work_item_type}: {missing.mapping}")

    for failure in result.failures:
        logger.error(f"    #{failure.work_item_id}: {failure.message}")

    if result.cancelled:
        logger.warning("  Run cancelled by operator before any write")
    logger.info("=" * 60)


def log_rewrite_summary(result: QueryRewriteResult) -> None:
    logger.info("=" * 60)
    logger.info("QUERY REWRITE SUMMARY" + (" (dry run)" if result.dry_run else ""))
    logger.info(f"  Queries scanned: {result.scanned}")
    logger.info(f"  Queries matched: {result.matched}")
    logger.info(f"  Queries updated: {result.updated}")
    logger.info(f"  Queries skipped: {result.skipped}")
    log = logger.error if result.failed else logger.info
    log(f"  Queries failed:  {result.failed}")

    for failure in result.failures:
        logger.error(f"    {failure.name} ({failure.query_id}): {failure.message}")

    if result.cancelled:
        logger.warning("  Run cancelled by operator before any write")
    logger.info("=" * 60)


def log_witd_summary(result: WitdExportResult) -> None:
    logger.info("=" * 60)
    logger.info("WORK ITEM TYPE EXPORT SUMMARY" + (" (dry run)" if result.dry_run else ""))
    logger.info(f"  Types planned:  {len(result.planned)}")
    logger.info(f"  Types exported: {result.exported}")
    log = logger.error if result.failed else logger.info
    log(f"  Types failed:   {result.failed}")

    for project, work_item_type, message in result.failures:
        logger.error(f"    {project}/{work_item_type}: {message}")

    if result.import_commands_path:
        logger.info(f"  Import commands written to {result.import_commands_path}")
    logger.info("=" * 60)
