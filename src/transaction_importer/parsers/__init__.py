"""Parsing of delimited statement files into extracted transactions."""

from transaction_importer.parsers.base import MissingEssentialColumns, ParseError
from transaction_importer.parsers.column_mapper import (
    HEADER_SYNONYMS,
    ColumnMapper,
    ColumnMapping,
    map_columns_heuristic,
)
from transaction_importer.parsers.csv_parser import CSVParser, CSVTable
from transaction_importer.parsers.row_extractor import RowExtractor, clean_merchant

__all__ = [
    "ParseError",
    "MissingEssentialColumns",
    "ColumnMapper",
    "ColumnMapping",
    "HEADER_SYNONYMS",
    "map_columns_heuristic",
    "CSVParser",
    "CSVTable",
    "RowExtractor",
    "clean_merchant",
]
