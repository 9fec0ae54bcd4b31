import csv
import io
import logging
from pathlib import Path
from typing import List, Tuple, Union

from visiotech_sync.core.exceptions import InputFileError
from visiotech_sync.models.supplier import SUPPLIER_COLUMNS, SupplierRow, canonical_column
from visiotech_sync.models.sync import RowError
from visiotech_sync.services.transforms import fix_encoding


logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = ('|', ';', '\t', ',')

# Field values in the supplier export can exceed the csv module default
csv.field_size_limit(16 * 1024 * 1024)


class SupplierService:
    """Reads the Visiotech product export into ``SupplierRow`` objects."""

    def _read_bytes(self, path: Union[str, Path]) -> bytes:
        p = Path(path)
        if not p.is_file():
            raise InputFileError(f"Input file not found: {p}")
        try:
            return p.read_bytes()
        except OSError as e:
            raise InputFileError(f"Cannot read input file {p}: {e}") from e

    def _decode(self, content: bytes) -> str:
        try:
            return content.decode('utf-8-sig')
        except UnicodeDecodeError:
            logger.warning("Input is not valid UTF-8, decoding as cp1252")
            return content.decode('cp1252', errors='replace')

    def _first_record(self, sample: str, delimiter: str) -> List[str]:
        try:
            return next(csv.reader(io.StringIO(sample, newline=''), delimiter=delimiter), [])
        except csv.Error:
            return []

    def detect_delimiter(self, text: str) -> str:
        """Pick the delimiter that turns the first record into a header or a full row.

        Splitting with ``csv`` rather than counting characters keeps commas
        inside descriptions from outvoting the real separator.
        """
        sample = text[:256 * 1024]
        splits = {d: self._first_record(sample, d) for d in CANDIDATE_DELIMITERS}
        for d, fields in splits.items():
            if self._has_header(fields):
                return d
        for d, fields in splits.items():
            if len(fields) == len(SUPPLIER_COLUMNS):
                return d
        best = max(CANDIDATE_DELIMITERS, key=lambda d: len(splits[d]))
        if len(splits[best]) < 2:
            raise InputFileError("Could not detect the column delimiter (expected | ; tab or ,)")
        logger.warning(f"First record has {len(splits[best])} fields, expected {len(SUPPLIER_COLUMNS)}")
        return best

    def _has_header(self, first_fields: List[str]) -> bool:
        names = {canonical_column(f) for f in first_fields}
        return 'name' in names and ('brand' in names or 'ean' in names or 'stock' in names)

    def parse(self, content: bytes) -> Tuple[List[SupplierRow], List[RowError]]:
        text = fix_encoding(self._decode(content))
        if not text.strip():
            raise InputFileError("Input file is empty")
        delimiter = self.detect_delimiter(text)
        logger.info(f"Detected delimiter {delimiter!r}")

        reader = csv.reader(io.StringIO(text, newline=''), delimiter=delimiter)
        try:
            first = next(reader)
        except StopIteration:
            raise InputFileError("Input file is empty")
        except csv.Error as e:
            raise InputFileError(f"Malformed CSV header: {e}") from e

        if self._has_header(first):
            header = [canonical_column(h) for h in first]
            pending = []
        else:
            logger.warning("No recognisable header row, applying the fixed supplier columns")
            header = list(SUPPLIER_COLUMNS)
            pending = [first]

        missing = [c for c in SUPPLIER_COLUMNS if c not in header]
        if missing:
            logger.warning(f"Supplier header is missing columns: {missing}")

        rows: List[SupplierRow] = []
        errors: List[RowError] = []

        def _consume(fields: List[str], line_no: int) -> None:
            if not any(f.strip() for f in fields):
                return
            record = dict(zip(header, fields))
            try:
                row = SupplierRow.from_record(record)
            except Exception as e:
                errors.append(RowError(line=line_no, sku=record.get('name'), error=str(e)))
                logger.warning(f"Skipping line {line_no}: {e}")
                return
            if not row.sku:
                logger.debug(f"Skipping line {line_no}: empty name")
                return
            rows.append(row)

        data_lines = 0
        for fields in pending:
            data_lines += 1
            _consume(fields, 1)
        while True:
            try:
                fields = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                errors.append(RowError(line=reader.line_num, error=f"Malformed CSV line: {e}"))
                logger.warning(f"Skipping malformed line {reader.line_num}: {e}")
                continue
            if any(f.strip() for f in fields):
                data_lines += 1
            _consume(fields, reader.line_num)

        if data_lines and not rows:
            raise InputFileError(
                f"None of the {data_lines} data lines produced a product row; check the header and delimiter"
            )
        logger.info(f"Parsed {len(rows)} supplier rows ({len(errors)} unreadable lines)")
        return rows, errors

    def read_file(self, path: Union[str, Path]) -> Tuple[List[SupplierRow], List[RowError]]:
        logger.info(f"Reading supplier file {path}")
        return self.parse(self._read_bytes(path))


supplier_service = SupplierService()
