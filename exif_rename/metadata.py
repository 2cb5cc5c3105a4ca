"""
metadata.py

Reads the embedded EXIF dates that exif_rename uses to name files.

Pillow does the decoding. Callers get back the four date tags in priority
order, each paired with a datetime or None, or None for the whole file when
Pillow cannot make sense of it at all.

Dependencies:
    - Pillow
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

# IFD pointers
EXIF_IFD = 0x8769
GPS_IFD = 0x8825

# IFD0 tags
DATETIME_TAG = 306                  # DateTime

# Exif sub-IFD tags
DATETIME_ORIGINAL_TAG = 36867       # DateTimeOriginal
DATETIME_DIGITIZED_TAG = 36868      # DateTimeDigitized
SUBSEC_TIME_TAG = 37520             # SubsecTime
SUBSEC_TIME_ORIGINAL_TAG = 37521    # SubsecTimeOriginal
SUBSEC_TIME_DIGITIZED_TAG = 37522   # SubsecTimeDigitized

# GPS IFD tags
GPS_DATE_STAMP_TAG = 29             # GPSDateStamp

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
GPS_DATE_FORMAT = "%Y:%m:%d"


class DateTag(Enum):
    """Embedded date tags consulted when naming a file."""
    DATETIME = "IFD0 DateTime"
    DATETIME_ORIGINAL = "EXIF DateTimeOriginal"
    DATETIME_DIGITIZED = "EXIF DateTimeDigitized"
    GPS_DATE_STAMP = "GPS DateStamp"


TAG_PRIORITY = (
    DateTag.DATETIME,
    DateTag.DATETIME_ORIGINAL,
    DateTag.DATETIME_DIGITIZED,
    DateTag.GPS_DATE_STAMP,
)


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    # Some writers pad ASCII tags with NULs or spaces
    return value.strip("\x00 ")


def parse_exif_datetime(raw, subsec=None) -> Optional[datetime]:
    """Parse an EXIF ``YYYY:MM:DD HH:MM:SS`` value.

    Args:
        raw: Tag value as stored by Pillow (str or bytes).
        subsec: Optional SubsecTime* value adding fractional seconds.

    Returns:
        datetime or None: Naive datetime, or None when the value is
        missing or malformed (e.g. the ``0000:00:00 00:00:00`` placeholder).
    """
    text = _as_text(raw)
    if not text:
        return None
    try:
        parsed = datetime.strptime(text, EXIF_DATETIME_FORMAT)
    except ValueError:
        return None

    fraction = _as_text(subsec)
    if fraction:
        digits = ""
        for char in fraction:
            if not char.isdigit():
                break
            digits += char
        if digits:
            parsed = parsed.replace(microsecond=int(digits[:6].ljust(6, "0")))
    return parsed


def parse_gps_date(raw) -> Optional[datetime]:
    """Parse a GPSDateStamp ``YYYY:MM:DD`` value as midnight of that day."""
    text = _as_text(raw)
    if not text:
        return None
    try:
        return datetime.strptime(text, GPS_DATE_FORMAT)
    except ValueError:
        return None


def read_exif_dates(path: Path,
                    logger: logging.Logger) -> Optional[list[tuple[DateTag, Optional[datetime]]]]:
    """Read the embedded date tags of a file in priority order.

    Args:
        path (Path): File to inspect.
        logger (logging.Logger): Logger for debug messages.

    Returns:
        list or None: ``(DateTag, datetime or None)`` pairs ordered as
        TAG_PRIORITY, or None when the file has no metadata Pillow can read.
    """
    try:
        with Image.open(path) as img:
            exif = img.getexif()
            exif_ifd = exif.get_ifd(EXIF_IFD)
            gps_ifd = exif.get_ifd(GPS_IFD)
    except UnidentifiedImageError:
        logger.debug("%s no EXIF information found", path.name)
        return None
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        logger.debug("%s metadata could not be decoded: %s", path.name, e)
        return None

    values = {
        DateTag.DATETIME: parse_exif_datetime(
            exif.get(DATETIME_TAG), exif_ifd.get(SUBSEC_TIME_TAG)),
        DateTag.DATETIME_ORIGINAL: parse_exif_datetime(
            exif_ifd.get(DATETIME_ORIGINAL_TAG), exif_ifd.get(SUBSEC_TIME_ORIGINAL_TAG)),
        DateTag.DATETIME_DIGITIZED: parse_exif_datetime(
            exif_ifd.get(DATETIME_DIGITIZED_TAG), exif_ifd.get(SUBSEC_TIME_DIGITIZED_TAG)),
        DateTag.GPS_DATE_STAMP: parse_gps_date(gps_ifd.get(GPS_DATE_STAMP_TAG)),
    }
    for tag in TAG_PRIORITY:
        if values[tag] is None:
            logger.debug("%s has no usable %s", path.name, tag.value)
    return [(tag, values[tag]) for tag in TAG_PRIORITY]
