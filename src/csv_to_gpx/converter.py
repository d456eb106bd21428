"""CSV to GPX converter for marine navigation logs.

Converts CSV track logs (timestamp, position, speed, course, heading, heel,
trim) to a single-track GPX 1.1 document with navigation attributes on each
track point.
"""

from __future__ import annotations

import argparse
import logging
import math
import re
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pandas as pd


logger = logging.getLogger(__name__)

# Columns that must be present in the CSV header (any order)
REQUIRED_COLUMNS = [
    "timestamp",
    "latitude",
    "longitude",
    "sog_kts",
    "cog",
    "hdg_true",
    "heel",
    "trim",
]

# Required columns parsed as floats; everything except the timestamp
NUMERIC_COLUMNS = [col for col in REQUIRED_COLUMNS if col != "timestamp"]

GPX_CREATOR = "csv_to_gpx_converter_web"
GPX_NAMESPACE = "http://www.topografix.com/GPX/1/1"

CONVERTED_SUFFIX = "_converted.gpx"

# Keywords pandas resolves against the current clock
RELATIVE_TIMESTAMPS = {"now", "today", "yesterday", "tomorrow"}

_CSV_SUFFIX_RE = re.compile(r"\.csv$", re.IGNORECASE)
_FLOAT_PREFIX_RE = re.compile(
    r"[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
)


class ConversionError(Exception):
    """Base class for conversion errors."""


class MalformedInput(ConversionError, ValueError):
    """The CSV text cannot produce a track (structure or content)."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class InvalidTimestamp(ConversionError, ValueError):
    """A timestamp string does not describe a valid instant."""


@dataclass(frozen=True)
class TrackPoint:
    """One valid CSV row."""

    timestamp: str
    latitude: float
    longitude: float
    sog_kts: float
    cog: float
    hdg_true: float
    heel: float
    trim: float


@dataclass(frozen=True)
class ConversionResult:
    document: str
    suggested_filename: str
    point_count: int


def normalize_timestamp(raw: str) -> str:
    """Parse a timestamp and format it as UTC ISO 8601 with milliseconds.

    Handles:
    - ISO 8601 strings, with or without a numeric offset (+0400, +04:00, Z)
    - Other datetime string formats understood by pandas

    Strings without an offset are taken to be UTC. Relative keywords such as
    "now" and "today" are rejected, so the result depends only on the input.

    Args:
        raw: Timestamp text from the CSV

    Returns:
        Timestamp formatted as YYYY-MM-DDTHH:MM:SS.sssZ

    Raises:
        InvalidTimestamp: If the text does not parse to a valid instant
    """
    if raw.strip().lower() in RELATIVE_TIMESTAMPS:
        raise InvalidTimestamp(f"Relative timestamp not allowed: {raw!r}")

    try:
        parsed = pd.to_datetime(raw, utc=True)
    except (ValueError, TypeError, OverflowError) as e:
        raise InvalidTimestamp(f"Invalid timestamp format: {raw!r}") from e

    if pd.isna(parsed):
        raise InvalidTimestamp(f"Invalid timestamp format: {raw!r}")

    millis = parsed.microsecond // 1000
    return f"{parsed.strftime('%Y-%m-%dT%H:%M:%S')}.{millis:03d}Z"


def parse_float(text: str) -> float:
    """Parse the leading number of a string, NaN if there is none.

    Trailing garbage is ignored ("12.5kts" -> 12.5) and "Infinity" is
    accepted. Never raises.
    """
    match = _FLOAT_PREFIX_RE.match(text.strip())
    if match is None:
        return math.nan
    number = match.group(0)
    if number.lstrip("+-") == "Infinity":
        return -math.inf if number.startswith("-") else math.inf
    return float(number)


def clean_field(field: str) -> str:
    """Strip whitespace and double quotes from a CSV field."""
    return field.strip().replace('"', "")


def split_line(line: str) -> list[str]:
    # Plain comma split; quoted fields containing commas are not supported
    return [clean_field(field) for field in line.split(",")]


def parse_csv(csv_text: str) -> list[TrackPoint]:
    """Parse CSV text into track points.

    Rows with a column count different from the header, an unparseable
    timestamp or a non-finite latitude/longitude are skipped. The remaining
    numeric columns are not validated and may hold NaN.

    Args:
        csv_text: Full CSV text including the header row

    Returns:
        Track points in input row order

    Raises:
        MalformedInput: If there is no data row, a required column is
            missing, or no row survives validation
    """
    lines = csv_text.strip().split("\n")
    if len(lines) < 2:
        raise MalformedInput(
            "too few lines: CSV file must contain a header and at least one data row"
        )

    headers = split_line(lines[0])
    missing = [col for col in REQUIRED_COLUMNS if col not in headers]
    if missing:
        raise MalformedInput(f"missing columns: {', '.join(missing)}", missing=missing)

    points = []
    for line_number, line in enumerate(lines[1:], start=2):
        values = split_line(line)
        if len(values) != len(headers):
            logger.debug(
                "Skipping row %d: expected %d values, got %d",
                line_number,
                len(headers),
                len(values),
            )
            continue

        row = dict(zip(headers, values))

        try:
            timestamp = normalize_timestamp(row["timestamp"])
        except InvalidTimestamp as e:
            logger.warning("Skipping row %d: %s", line_number, e)
            continue

        numbers = {col: parse_float(row[col]) for col in NUMERIC_COLUMNS}

        if not (math.isfinite(numbers["latitude"]) and math.isfinite(numbers["longitude"])):
            logger.warning("Skipping row %d: Invalid coordinates", line_number)
            continue

        points.append(TrackPoint(timestamp=timestamp, **numbers))

    if not points:
        raise MalformedInput("no valid points: no valid data points found in CSV file")

    return points


def format_number(value: float) -> str:
    """Render a float the way a default number-to-string conversion does.

    Uses the shortest round-trip digits. Magnitudes from 1e-6 up to, but not
    including, 1e21 are written in plain decimal notation without a trailing
    ".0"; anything outside that range uses "1.5e-7" / "1e+21" exponent
    notation. NaN becomes "NaN" and infinities become "Infinity"/"-Infinity".

    Args:
        value: Number to render

    Returns:
        The rendered number, e.g. "182", "0.00001", "123456789012345680000"
    """
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    # Position of the decimal point relative to the start of the digits
    n = exponent + k

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return sign + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return sign + "0." + "0" * -n + digits

    e = n - 1
    mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
    return f"{sign}{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"


def create_gpx(points: Iterable[TrackPoint]) -> str:
    """Render track points as a GPX 1.1 document.

    All points go into a single track segment. The <ele> element carries the
    true heading rather than an elevation, for heading overlay tools.

    Args:
        points: Track points in track order

    Returns:
        GPX document text, one element per line
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<gpx version="1.1" creator="{GPX_CREATOR}" xmlns="{GPX_NAMESPACE}">',
        "<trk>",
        "<trkseg>",
    ]

    for point in points:
        heading = format_number(point.hdg_true)
        parts.extend(
            [
                f'<trkpt lat="{format_number(point.latitude)}" '
                f'lon="{format_number(point.longitude)}">',
                f"<ele>{heading}</ele>",
                f"<time>{point.timestamp}</time>",
                f"<cog>{format_number(point.cog)}</cog>",
                f"<hdg_true>{heading}</hdg_true>",
                f"<heel>{format_number(point.heel)}</heel>",
                f"<trim>{format_number(point.trim)}</trim>",
                "</trkpt>",
            ]
        )

    parts.extend(["</trkseg>", "</trk>", "</gpx>"])
    return "\n".join(parts)


def suggest_filename(filename: str) -> str:
    """Replace a trailing .csv (any case) with _converted.gpx.

    Names without a .csv suffix are returned unchanged.
    """
    return _CSV_SUFFIX_RE.sub(CONVERTED_SUFFIX, filename)


def convert(csv_text: str, filename: str) -> ConversionResult:
    """Convert CSV text to a GPX document.

    Args:
        csv_text: Decoded CSV file content
        filename: Original file name, used for the suggested output name

    Returns:
        ConversionResult with the document, output filename and point count

    Raises:
        MalformedInput: If the CSV cannot produce any track point
    """
    points = parse_csv(csv_text)
    document = create_gpx(points)

    logger.info("Converted %d points from %s", len(points), filename)

    return ConversionResult(
        document=document,
        suggested_filename=suggest_filename(filename),
        point_count=len(points),
    )


def convert_file(
    input_path: str | Path, output_path: str | Path | None = None
) -> ConversionResult:
    """Convert a CSV file on disk and write the GPX next to it.

    Args:
        input_path: Path to input CSV file (UTF-8)
        output_path: Path to output GPX file; defaults to the suggested
            filename in the input's directory

    Returns:
        The ConversionResult that was written

    Raises:
        MalformedInput: If the CSV cannot produce any track point
        ValueError: If the default output path would overwrite the input
    """
    input_path = Path(input_path)
    result = convert(input_path.read_text(encoding="utf-8"), input_path.name)

    if output_path is None:
        output_path = input_path.parent / result.suggested_filename
        if output_path.name == input_path.name:
            raise ValueError(
                f"Input {input_path} has no .csv extension; pass an output path"
            )

    Path(output_path).write_text(result.document, encoding="utf-8")
    return result


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Convert marine navigation CSV logs to GPX"
    )
    parser.add_argument("input", help="Input CSV file path")
    parser.add_argument(
        "-o", "--output",
        help="Output GPX file path (default: <input>_converted.gpx)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log skipped rows and other diagnostics"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        result = convert_file(args.input, args.output)
    except (ConversionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output = args.output or str(Path(args.input).parent / result.suggested_filename)
    print(f"Converted {result.point_count} points: {args.input} -> {output}")


if __name__ == "__main__":
    main()
