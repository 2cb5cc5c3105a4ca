"""
exif_rename.py

Renames image and media files in place after the date they were taken.

Each file gets a name of the form ``yyyyMMdd_HHmmss`` followed by its
original extension in lower case. The date comes from the first source that
has one:

    1. Embedded EXIF tags (DateTime, DateTimeOriginal, DateTimeDigitized,
       GPSDateStamp, in that order).
    2. A date string in the first or last 2048 bytes of the file.
    3. The file's last modified time, only with -m.

Files that already carry their canonical name are left alone, and an
existing file is never overwritten. Directories are scanned one level deep.

Usage:
    exif-rename [-d] [-i] [-m] [--mtime-suffix] [-v] path [path ...]

Dependencies:
    - Pillow
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from logging.handlers import TimedRotatingFileHandler
import os
from pathlib import Path
import re
import sys
from timeit import default_timer as timer
from typing import Optional

from .metadata import read_exif_dates

SOURCE_METADATA = "embedded-metadata"
SOURCE_TEXT = "text-pattern"
SOURCE_MTIME = "filesystem-mtime"

OUTCOME_RENAMED = "renamed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"

BASE_NAME_FORMAT = "%Y%m%d_%H%M%S"

# Bytes read from each end of a file when looking for a date string
SCAN_WINDOW = 2048

# Suffixes tried by the increment collision policy: _2 .. _9
INCREMENT_RANGE = range(2, 10)

# Ordered (pattern, strptime format) pairs, first match wins
DATE_PATTERNS = (
    (re.compile(r"\w{3} \d{2} \d{2}:\d{2}:\d{2} \d{4}", re.ASCII), "%b %d %H:%M:%S %Y"),
    (re.compile(r"\d{4}:\d{2}:\d{2} \d{2}:\d{2}:\d{2}", re.ASCII), "%Y:%m:%d %H:%M:%S"),
    (re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{4}", re.ASCII), "%Y-%m-%dT%H:%M:%S%z"),
)


class NoDateFoundError(Exception):
    """Raised when none of the enabled date sources yields a timestamp."""


@dataclass(frozen=True)
class RunConfig:
    """Flags controlling a run."""
    dry_run: bool = False
    use_increment: bool = False
    use_last_modified: bool = False
    mtime_suffix: bool = False


@dataclass(frozen=True)
class ResolvedDate:
    """A timestamp and where it came from."""
    timestamp: datetime
    source: str


@dataclass
class ProcessingStats:
    """Statistics from a run over the requested paths."""
    renamed: int = 0
    skipped: int = 0
    failed: int = 0
    missing: int = 0
    dry_run: bool = False
    elapsed: timedelta = field(default_factory=timedelta)

    def record(self, outcome: str) -> None:
        """Count a per-file outcome."""
        if outcome == OUTCOME_RENAMED:
            self.renamed += 1
        elif outcome == OUTCOME_SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def log_file_path(script_name: str) -> Path:
    """Returns the absolute path of the log file written for script_name."""
    return Path(f"{script_name}.log").resolve()


def is_log_file(path: Path, log_path: Optional[Path]) -> bool:
    """True for the active log file and its rotated backups."""
    if log_path is None:
        return False
    resolved = path.resolve()
    return resolved == log_path or (
        resolved.parent == log_path.parent
        and resolved.name.startswith(log_path.name + ".")
    )


def setup_logger(script_name: str, verbose: bool = False) -> logging.Logger:
    """Configures and returns a logger for the script.

    Handlers are attached on the first call only; later calls just set the level.

    Args:
        script_name (str): Name of the script for log file naming.
        verbose (bool): If True, set log level to DEBUG; otherwise INFO.

    Returns:
        logging.Logger: Configured logger instance.
    """
    logger = logging.getLogger(__name__)
    if not logger.handlers:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler = TimedRotatingFileHandler(
            log_file_path(script_name), when="d", backupCount=10, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Keep Pillow's decoder chatter out of the operator log
    logging.getLogger("PIL").setLevel(logging.WARNING)
    return logger


def find_date(text: str,
              pattern: re.Pattern,
              date_format: str,
              logger: logging.Logger) -> Optional[datetime]:
    """Returns the first match of pattern in text that parses as a date."""
    for match in pattern.finditer(text):
        try:
            parsed = datetime.strptime(match.group(0), date_format)
        except ValueError:
            logger.debug("... ignoring unparsable date string %r", match.group(0))
            continue
        logger.debug("... found %s", match.group(0))
        return parsed
    return None


def scan_text_date(path: Path, logger: logging.Logger) -> Optional[datetime]:
    """Looks for a date string near the start or end of a file.

    Reads the first and the last SCAN_WINDOW bytes. Patterns are tried in
    DATE_PATTERNS order; for each pattern the head is searched before the tail.

    Args:
        path (Path): File to scan.
        logger (logging.Logger): Logger instance.

    Returns:
        datetime or None: The first date found.
    """
    with path.open("rb") as handle:
        head = handle.read(SCAN_WINDOW)
        size = handle.seek(0, os.SEEK_END)
        tail = b""
        if size > SCAN_WINDOW:
            handle.seek(size - SCAN_WINDOW)
            tail = handle.read(SCAN_WINDOW)

    # latin-1 maps every byte to one character
    buffers = [head.decode("latin-1")]
    if tail:
        buffers.append(tail.decode("latin-1"))

    for pattern, date_format in DATE_PATTERNS:
        for text in buffers:
            parsed = find_date(text, pattern, date_format, logger)
            if parsed is not None:
                logger.debug("%s dated from its content", path.name)
                return parsed
    return None


def last_modified_timestamp(path: Path, logger: logging.Logger) -> datetime:
    """Returns the file's last modified time as a naive local datetime."""
    modified = datetime.fromtimestamp(path.stat().st_mtime)
    logger.debug("%s last modified timestamp used: %s",
                 path.name,
                 modified.isoformat())
    return modified


def resolve_date(path: Path, config: RunConfig, logger: logging.Logger) -> ResolvedDate:
    """Determines the timestamp a file should be named after.

    Tries embedded EXIF tags, then a date string in the file's content,
    then (with use_last_modified) the file's modification time.

    Args:
        path (Path): File to date.
        config (RunConfig): Run flags.
        logger (logging.Logger): Logger instance.

    Returns:
        ResolvedDate: The winning timestamp and its source.

    Raises:
        NoDateFoundError: If no enabled source has a date.
    """
    logger.debug("Looking for a date in file: %s", path)

    tag_dates = read_exif_dates(path, logger)
    if tag_dates is not None:
        for tag, value in tag_dates:
            if value is not None:
                logger.debug("... found %s in %s", value.isoformat(), tag.value)
                return ResolvedDate(value, SOURCE_METADATA)

    text_date = scan_text_date(path, logger)
    if text_date is not None:
        return ResolvedDate(text_date, SOURCE_TEXT)

    if config.use_last_modified:
        return ResolvedDate(last_modified_timestamp(path, logger), SOURCE_MTIME)

    logger.debug("... no date found")
    raise NoDateFoundError(f"No date found in file {path}")


def file_extension(name: str) -> str:
    """Returns the substring from the last '.' of name, or '' if there is none."""
    index = name.rfind(".")
    if index < 0:
        return ""
    return name[index:]


def build_base_name(timestamp: datetime) -> str:
    """Formats a timestamp as ``yyyyMMdd_HHmmss`` in local time.

    Timezone-aware values are converted to the local zone first; naive
    values are taken as local wall clock time.
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.strftime(BASE_NAME_FORMAT)


def build_candidate_name(base: str, extension: str, suffix: str = "") -> str:
    """Joins base name, optional suffix and the lower-cased extension."""
    return f"{base}{suffix}{extension.lower()}"


def resolve_collision(path: Path,
                      base: str,
                      extension: str,
                      config: RunConfig,
                      logger: logging.Logger) -> Optional[Path]:
    """Chooses a destination when the canonical name is already taken.

    With use_increment, ``_2`` to ``_9`` are tried and the first free one
    wins; when all are taken ``_9`` is returned and the rename step refuses
    it. Otherwise, with mtime_suffix, the base gets the last three digits of
    the existing file's modification time in milliseconds. Otherwise the
    file is skipped.

    Returns:
        Path or None: Destination to rename to, or None to skip the file.
    """
    folder = path.parent
    canonical = folder / build_candidate_name(base, extension)

    if config.use_increment:
        candidate = canonical
        for index in INCREMENT_RANGE:
            candidate = folder / build_candidate_name(base, extension, f"_{index}")
            if not candidate.exists():
                break
        return candidate

    if config.mtime_suffix:
        millis = canonical.stat().st_mtime_ns // 1_000_000
        candidate = folder / build_candidate_name(base, extension, f"_{millis % 1000:03d}")
        if not candidate.exists():
            return candidate
        logger.info("File %s already exists, skipping %s", candidate.name, path.name)
        return None

    logger.info("File %s already exists, skipping %s", canonical.name, path.name)
    return None


def rename_file(src_path: Path,
                dst_path: Path,
                dry_run: bool,
                logger: logging.Logger) -> bool:
    """Rename a file to a new destination path, never replacing an existing file.

    Args:
        src_path (Path): Source file path.
        dst_path (Path): Destination file path.
        dry_run (bool): If True, only log the rename.
        logger (logging.Logger): Logger instance.

    Returns:
        bool: True if the file was (or would be) renamed, False otherwise.
    """
    if dst_path.exists():
        logger.error("Rename refused for %s: %s already exists", src_path.name, dst_path.name)
        return False

    logger.info("Renaming %s to %s", src_path, dst_path)
    if dry_run:
        logger.info("*** DRY RUN / NOTHING CHANGED ***")
        return True
    try:
        src_path.rename(dst_path)
    except OSError as e:
        logger.error("Rename failed for %s: %s", src_path.name, e)
        return False
    return True


def process_file(path: Path, config: RunConfig, logger: logging.Logger) -> str:
    """Dates, names and renames a single file.

    Returns:
        str: OUTCOME_RENAMED, OUTCOME_SKIPPED or OUTCOME_FAILED.
    """
    logger.debug("Processing file %s", path)
    try:
        resolved = resolve_date(path, config, logger)
        extension = file_extension(path.name)
        base = build_base_name(resolved.timestamp)
        if path.name.startswith(base):
            logger.info("File %s already renamed, skipping ...", path)
            return OUTCOME_SKIPPED

        dst_path = path.parent / build_candidate_name(base, extension)
        if dst_path.exists():
            dst_path = resolve_collision(path, base, extension, config, logger)
            if dst_path is None:
                return OUTCOME_SKIPPED

        logger.debug("%s dated from %s", path.name, resolved.source)
        if rename_file(path, dst_path, config.dry_run, logger):
            return OUTCOME_RENAMED
        return OUTCOME_FAILED
    except NoDateFoundError as e:
        logger.info("Skipping %s: %s", path.name, e)
        return OUTCOME_SKIPPED
    except (OSError, ValueError, OverflowError) as e:
        logger.error("Cannot rename file %s: %s", path, e)
        return OUTCOME_FAILED


def process_directory(directory: Path,
                      config: RunConfig,
                      logger: logging.Logger,
                      stats: ProcessingStats,
                      log_path: Optional[Path] = None) -> None:
    """Processes the regular files directly inside a directory, except the log file."""
    logger.debug("Processing directory %s", directory)
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.error("Cannot read directory %s: %s", directory, e)
        stats.failed += 1
        return

    for entry in entries:
        logger.debug("Current path %s", entry)
        if is_log_file(entry, log_path):
            logger.debug("... is the log file, ignoring")
        elif entry.is_file():
            stats.record(process_file(entry, config, logger))
        else:
            logger.debug("... is not a file, ignoring")


def process_paths(paths: list[str],
                  config: RunConfig,
                  logger: logging.Logger,
                  log_path: Optional[Path] = None) -> ProcessingStats:
    """Processes each requested file or directory in order.

    Args:
        paths (list[str]): Files and directories from the command line.
        config (RunConfig): Run flags.
        logger (logging.Logger): Logger instance.
        log_path (Path, optional): Log file being written, never renamed.

    Returns:
        ProcessingStats: Counters for the summary.
    """
    start = timer()
    stats = ProcessingStats(dry_run=config.dry_run)
    logger.debug("Processing path list %s", paths)

    for raw in paths:
        path = Path(raw)
        logger.debug("Current path %s", path)
        if path.is_dir():
            process_directory(path, config, logger, stats, log_path)
        elif is_log_file(path, log_path):
            logger.info("Path %s is the log file, skipping", path)
        elif path.is_file():
            stats.record(process_file(path, config, logger))
        else:
            logger.warning("Path %s does not exist, skipping", path)
            stats.missing += 1

    stats.elapsed = timedelta(seconds=timer() - start)
    return stats


def log_summary(stats: ProcessingStats, logger: logging.Logger) -> None:
    """Log processing summary statistics."""
    if stats.dry_run:
        logger.info("Would rename %d files. Run without -d to apply changes.", stats.renamed)
    else:
        logger.info("Renamed %d files", stats.renamed)
    logger.info("Skipped %d files", stats.skipped)
    logger.info("Failed on %d files", stats.failed)
    if stats.missing:
        logger.info("Ignored %d missing paths", stats.missing)
    logger.info("Finished in %s seconds", stats.elapsed)


def build_parser() -> argparse.ArgumentParser:
    """Builds the command line parser. Single-letter flags accept either case."""
    parser = argparse.ArgumentParser(
        description='Rename image/media files after the date they were taken.'
    )
    parser.add_argument(
        'paths',
        nargs='*',
        help='Files and directories to process'
    )
    parser.add_argument(
        '-d', '-D',
        '--dry-run',
        dest='dry_run',
        action='store_true',
        default=False,
        help='Log the renames without performing them'
    )
    parser.add_argument(
        '-i', '-I',
        '--increment',
        dest='increment',
        action='store_true',
        default=False,
        help='Append _2 to _9 when the target name is taken'
    )
    parser.add_argument(
        '-m', '-M',
        '--last-modified',
        dest='last_modified',
        action='store_true',
        default=False,
        help='Fall back to the file modification time when no date is found'
    )
    parser.add_argument(
        '--mtime-suffix',
        action='store_true',
        default=False,
        help=('Without -i, append the last three digits of the existing '
              'file modification time in milliseconds instead of skipping')
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='store_true',
        default=False,
        help='Enable verbose (DEBUG) logging'
    )
    return parser


def build_config(args: argparse.Namespace) -> RunConfig:
    """Builds the run configuration from parsed arguments."""
    return RunConfig(
        dry_run=args.dry_run,
        use_increment=args.increment,
        use_last_modified=args.last_modified,
        mtime_suffix=args.mtime_suffix,
    )


def main(argv: Optional[list[str]] = None):
    """Parses arguments, sets up logging, and renames the given paths."""
    args = build_parser().parse_intermixed_args(argv)
    config = build_config(args)

    script_name = os.path.basename(sys.argv[0])
    logger = setup_logger(script_name, verbose=args.verbose)
    logger.info("*** Starting script: %s ***", script_name)
    logger.debug("Command arguments %s", args)

    try:
        stats = process_paths(args.paths, config, logger, log_file_path(script_name))
        log_summary(stats, logger)
    except Exception:  # pylint: disable=broad-exception-caught
        logger.critical("Unhandled exception", exc_info=True)
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':  # pragma: no cover
    main()
