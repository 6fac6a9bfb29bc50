"""
Weather CSV readers.
"""

from .csv_reader import WeatherCsvReader, normalize_decimals, parse_csv_line

__all__ = [
    "WeatherCsvReader",
    "normalize_decimals",
    "parse_csv_line",
]
