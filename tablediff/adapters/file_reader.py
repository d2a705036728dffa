"""
Raw file reader.
Single responsibility: read delimited text lines and spreadsheet sheets.
"""

import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import pandas as pd

from ..core.errors import SourceNotFound
from ..utils.logger import get_logger


logger = get_logger()


DELIMITED_SUFFIXES = {".csv", ".tsv", ".txt", ".dat", ".psv"}
SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm", ".xls"}

# Tried in order of likelihood
ENCODINGS = ['utf-8-sig', 'utf-8', 'cp1252', 'latin-1']


def file_kind(file_path) -> str:
    """
    Classify a file by extension.

    Args:
        file_path: Path to classify

    Returns:
        "spreadsheet" for Excel workbooks, "delimited" otherwise
    """
    suffix = Path(str(file_path)).suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        return "spreadsheet"
    return "delimited"


class FileReader:
    """
    Reads raw input for the normalizer. No parsing beyond line splitting.
    """

    def __init__(self, encodings: Optional[List[str]] = None):
        """
        Initialize file reader.

        Args:
            encodings: Encodings to try for delimited text, in order
        """
        self.encodings = encodings or list(ENCODINGS)

    def check_readable(self, file_path) -> Path:
        """
        Ensure a file exists and can be opened.

        Args:
            file_path: Path to file

        Returns:
            Resolved Path

        Raises:
            SourceNotFound: If the file is missing, a directory or unreadable
        """
        path = Path(str(file_path)).expanduser()
        if not path.exists():
            raise SourceNotFound(path)
        if not path.is_file():
            raise SourceNotFound(path, reason="is not a regular file")
        try:
            with open(path, "rb"):
                pass
        except OSError as e:
            raise SourceNotFound(path, reason=f"is not readable ({e.strerror})")
        return path

    def read_lines(self, file_path,
                   encoding: Optional[str] = None) -> Tuple[List[str], str]:
        """
        Read a delimited text file as a list of lines.

        Args:
            file_path: Path to delimited file
            encoding: Force an encoding instead of trying the fallback list

        Returns:
            (lines without terminators, encoding used)
        """
        path = self.check_readable(file_path)
        encodings = [encoding] if encoding else self.encodings

        logger.info("file_reader.lines.reading", file=str(path))

        for candidate in encodings:
            try:
                text = path.read_text(encoding=candidate)
            except (UnicodeDecodeError, UnicodeError):
                continue
            except OSError as e:
                raise SourceNotFound(path, reason=f"is not readable ({e.strerror})")
            lines = text.splitlines()
            logger.info("file_reader.lines.loaded",
                       file=str(path),
                       lines=len(lines),
                       encoding=candidate)
            return lines, candidate

        # Last resort: keep going with replacement characters
        logger.warning("file_reader.lines.encoding_fallback", file=str(path))
        text = path.read_text(encoding="utf-8", errors="replace")
        return text.splitlines(), "utf-8 (with replacements)"

    def read_sheet(self, file_path,
                   sheet_name: Optional[Union[str, int]] = None
                   ) -> Tuple[List[str], List[Dict[str, Any]]]:
        """
        Read one spreadsheet sheet with every cell as text.

        Args:
            file_path: Path to Excel workbook
            sheet_name: Sheet name or index (first sheet when None)

        Returns:
            (column names in sheet order, records)
        """
        path = self.check_readable(file_path)
        sheet = 0 if sheet_name in (None, "") else sheet_name

        logger.info("file_reader.excel.reading",
                   file=str(path),
                   sheet=sheet)

        try:
            df = pd.read_excel(path, sheet_name=sheet, dtype=str,
                               keep_default_na=False)
        except ValueError as e:
            # Unknown sheet names surface as ValueError from pandas
            raise SourceNotFound(path, reason=f"has no readable sheet {sheet!r} ({e})")
        except (zipfile.BadZipFile, ImportError, OSError) as e:
            # Corrupt archives and missing optional readers (xlrd for .xls)
            raise SourceNotFound(path, reason=f"is not a readable workbook ({e})")

        columns = [str(col) for col in df.columns]
        df.columns = columns
        records = df.to_dict(orient="records")

        logger.info("file_reader.excel.loaded",
                   rows=len(records),
                   columns=len(columns))

        return columns, records
