"""
Delimiter auto-detection.
Single responsibility: infer the field separator of a delimited text file.
"""

from pathlib import Path
from statistics import mean, pvariance
from typing import Dict, List, Optional, Sequence

from ..utils.logger import get_logger


logger = get_logger()


# Priority order breaks ties: comma first
CANDIDATES = (",", ";", "\t", "|", ":")
DEFAULT_DELIMITER = ","

DELIMITER_NAMES = {
    ",": "COMMA",
    ";": "SEMICOLON",
    "\t": "TAB",
    "|": "PIPE",
    ":": "COLON",
}


def split_line(line: str, delimiter: str) -> List[str]:
    """
    Split one line on a literal delimiter, ignoring delimiters inside quotes.

    Quoting only opens when `"` is the first non-blank character of a
    field; a quote later in a field (5" screen) is literal text. A doubled
    quote inside a quoted field is an escaped quote. An unterminated
    quoted field swallows the rest of the line as literal text.
    Fields are returned raw; quote stripping happens in the normalizer.

    Args:
        line: Raw line without line terminator
        delimiter: Single delimiter character

    Returns:
        Raw field texts
    """
    fields = []
    current = []
    in_quotes = False
    # Whether the current field already holds non-blank text
    started = False
    i = 0
    length = len(line)

    while i < length:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < length and line[i + 1] == '"':
                current.append('""')
                i += 2
                continue
            if in_quotes:
                in_quotes = False
            elif not started:
                in_quotes = True
            started = True
            current.append(ch)
        elif ch == delimiter and not in_quotes:
            fields.append("".join(current))
            current = []
            started = False
        else:
            if not ch.isspace():
                started = True
            current.append(ch)
        i += 1

    fields.append("".join(current))
    return fields


class DelimiterDetector:
    """
    Statistically infer the delimiter of a delimited text sample.

    Detection reads a fixed number of leading lines so its cost does not
    depend on file size, and it never raises: any doubt resolves to comma.
    """

    def __init__(self, sample_lines: int = 20,
                 candidates: Sequence[str] = CANDIDATES,
                 default: str = DEFAULT_DELIMITER):
        """
        Initialize detector.

        Args:
            sample_lines: Number of leading non-blank lines to inspect
            candidates: Delimiters to consider, in tie-break priority order
            default: Delimiter returned when detection is inconclusive
        """
        self.sample_lines = max(int(sample_lines), 1)
        self.candidates = tuple(candidates)
        self.default = default

    def detect(self, file_path, encoding: Optional[str] = None) -> str:
        """
        Detect the delimiter of a file.

        Args:
            file_path: Path to delimited text file
            encoding: Encoding to read with (utf-8-sig when None)

        Returns:
            Single delimiter character
        """
        try:
            lines = self._read_sample(Path(file_path), encoding)
        except (OSError, UnicodeError) as e:
            logger.warning("delimiter.sample_unreadable",
                          file=str(file_path),
                          error=str(e),
                          fallback=self.describe(self.default))
            return self.default

        delimiter = self.detect_from_lines(lines)
        logger.info("delimiter.detected",
                   file=str(file_path),
                   delimiter=self.describe(delimiter),
                   sample_lines=len(lines))
        return delimiter

    def detect_from_lines(self, lines: Sequence[str]) -> str:
        """
        Detect the delimiter that best explains a list of sample lines.

        Args:
            lines: Sample lines (blank lines are ignored)

        Returns:
            Single delimiter character
        """
        sample = [line for line in lines if line.strip()][:self.sample_lines]
        if len(sample) < 2:
            return self.default

        scores: Dict[str, tuple] = {}
        for priority, candidate in enumerate(self.candidates):
            counts = [len(split_line(line, candidate)) for line in sample]
            if max(counts) <= 1:
                continue
            # Lower variance wins, then more fields, then the earlier candidate
            scores[candidate] = (pvariance(counts), -mean(counts), priority)

        if not scores:
            return self.default

        return min(scores, key=scores.get)

    def _read_sample(self, file_path: Path, encoding: Optional[str]) -> List[str]:
        lines: List[str] = []
        with open(file_path, "r", encoding=encoding or "utf-8-sig",
                  errors="replace", newline="") as f:
            for raw in f:
                line = raw.rstrip("\r\n")
                if not line.strip():
                    continue
                lines.append(line)
                if len(lines) >= self.sample_lines:
                    break
        return lines

    @staticmethod
    def describe(delimiter: str) -> str:
        """Readable label for a delimiter in logs."""
        return DELIMITER_NAMES.get(delimiter, repr(delimiter))
