"""
Lazy CSV reader for weather observation files.

Expected layout: one header line, then rows of
``timestamp,city,temperature,humidity,rainfall,windSpeed,pressure``.
European decimal commas are normalised before the row is split.
"""

import re
import threading
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterator

from pydantic import ValidationError

from weather_pipeline.core.errors import CsvParseError
from weather_pipeline.core.models import WeatherRecord
from weather_pipeline.observability.logger import get_logger
from weather_pipeline.observability.metrics import MetricsCollector

logger = get_logger(__name__)

CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
FIELD_COUNT = 7

# digit , one-or-two digits, then a separator or end of line
_DECIMAL_COMMA_RE = re.compile(r"(\d),(\d{1,2})(?=,|$)")


def normalize_decimals(line: str) -> str:
    """
    Rewrite European decimal commas to periods.

    Example:
        >>> normalize_decimals("2024-03-15 08:00:00,Dodoma,22,5,60,0,1,50,8,2,1012,4")
        '2024-03-15 08:00:00,Dodoma,22.5,60.0,1.50,8.2,1012.4'
    """
    return _DECIMAL_COMMA_RE.sub(r"\1.\2", line)


def parse_csv_line(line: str, line_number: int | None = None) -> WeatherRecord:
    """
    Parse one data line into a WeatherRecord.

    Args:
        line: Raw line without trailing newline
        line_number: 1-based position in the file (for diagnostics)

    Returns:
        Parsed record

    Raises:
        CsvParseError: If the line does not hold seven valid fields
    """
    normalized = normalize_decimals(line.rstrip("\r\n"))
    fields = [field.strip() for field in normalized.split(",")]

    if len(fields) != FIELD_COUNT:
        raise CsvParseError(
            f"expected {FIELD_COUNT} fields, got {len(fields)}", line, line_number
        )

    try:
        timestamp = datetime.strptime(fields[0], CSV_TIMESTAMP_FORMAT)
    except ValueError:
        raise CsvParseError(f"invalid timestamp {fields[0]!r}", line, line_number) from None

    numbers = []
    for name, raw in zip(("temperature", "humidity", "rainfall", "windSpeed", "pressure"), fields[2:]):
        try:
            numbers.append(float(raw))
        except ValueError:
            raise CsvParseError(f"invalid {name} {raw!r}", line, line_number) from None

    try:
        return WeatherRecord(
            timestamp=timestamp,
            city=fields[1],
            temperature=numbers[0],
            humidity=numbers[1],
            rainfall=numbers[2],
            wind_speed=numbers[3],
            pressure=numbers[4],
        )
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise CsvParseError(f"invalid {field}: {error['msg']}", line, line_number) from None


class WeatherCsvReader:
    """
    Single-pass, lazy reader over a weather CSV file.

    The file is opened by open() (or on entering the context manager) so
    that a bad path fails synchronously for the caller. Iteration yields
    records one line at a time; malformed rows are logged and skipped.

    Usage:
        with WeatherCsvReader("/data/tanzania_weather_data.csv") as reader:
            for record in reader:
                ...
    """

    def __init__(
        self,
        path: str | Path,
        stop_event: threading.Event | None = None,
        metrics: MetricsCollector | None = None,
        encoding: str = "utf-8",
    ):
        """
        Args:
            path: CSV file to read
            stop_event: When set, iteration ends and the file is closed
            metrics: Metrics collector (a fresh one when omitted)
            encoding: Encoding applied to each line; a line that does not
                decode is counted as a parse error
        """
        self.path = Path(path)
        self.stop_event = stop_event
        self.metrics = metrics or MetricsCollector()
        self.encoding = encoding

        self.records_read = 0
        self.parse_errors = 0
        self.lines_seen = 0

        self._file: BinaryIO | None = None
        self._consumed = False

    def open(self) -> "WeatherCsvReader":
        """
        Open the file.

        Raises:
            FileNotFoundError: Path does not exist
            IsADirectoryError: Path is a directory
            PermissionError: File is not readable
        """
        if self._file is None:
            # bytes in, decoded per line, so one bad byte costs one row
            self._file = open(self.path, "rb")
        return self

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def closed(self) -> bool:
        return self._file is None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __iter__(self) -> Iterator[WeatherRecord]:
        if self._consumed:
            raise RuntimeError("WeatherCsvReader is single-pass and has already been iterated")
        self._consumed = True
        self.open()
        return self._records()

    def _records(self) -> Iterator[WeatherRecord]:
        try:
            header = self._file.readline()
            if not header:
                logger.warning(f"CSV file is empty: {self.path}")
                return
            self.lines_seen = 1

            for line_number, raw in enumerate(self._file, start=2):
                if self.stop_event is not None and self.stop_event.is_set():
                    logger.info(f"Stop requested, closing {self.path} at line {line_number}")
                    return

                self.lines_seen = line_number
                if not raw.strip():
                    continue

                try:
                    record = parse_csv_line(self._decode_line(raw, line_number), line_number)
                except CsvParseError as e:
                    self.parse_errors += 1
                    self.metrics.record_parse_error()
                    logger.error(
                        f"Error processing line {line_number}: {e.reason}",
                        extra={"line_number": line_number, "line": e.line.rstrip("\r\n")}
                    )
                    continue

                self.records_read += 1
                self.metrics.record_parsed()
                yield record
        finally:
            self.close()

    def _decode_line(self, raw: bytes, line_number: int) -> str:
        try:
            return raw.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise CsvParseError(
                f"line is not valid {self.encoding}: {e.reason} at byte {e.start}",
                raw.decode(self.encoding, errors="replace"),
                line_number,
            ) from None
