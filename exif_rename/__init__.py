"""EXIF Rename - A tool for renaming media files after the date they were taken."""

__version__ = "1.0.0"

__all__ = ["__version__"]

# Import the public API so it is available at package level
try:
    from .main import (
        DATE_PATTERNS,
        NoDateFoundError,
        ProcessingStats,
        ResolvedDate,
        RunConfig,
        build_base_name,
        build_candidate_name,
        file_extension,
        is_log_file,
        log_file_path,
        log_summary,
        main,
        process_directory,
        process_file,
        process_paths,
        rename_file,
        resolve_collision,
        resolve_date,
        scan_text_date,
        setup_logger,
    )
    from .metadata import TAG_PRIORITY, DateTag, read_exif_dates
    __all__.extend([
        "DATE_PATTERNS", "NoDateFoundError", "ProcessingStats", "ResolvedDate",
        "RunConfig", "build_base_name", "build_candidate_name", "file_extension",
        "is_log_file", "log_file_path",
        "log_summary", "main", "process_directory", "process_file", "process_paths",
        "rename_file", "resolve_collision", "resolve_date", "scan_text_date",
        "setup_logger", "TAG_PRIORITY", "DateTag", "read_exif_dates",
    ])
except ImportError as e:  # pragma: no cover
    # Only triggers when Pillow is missing
    import warnings  # pragma: no cover
    warnings.warn(f"Some exif_rename functionality may be unavailable: {e}",
                  ImportWarning)  # pragma: no cover
