"""Table structure recovery from line-split OCR text.

Finds header rows (a page may hold several tables), derives each
header's column schema, and assigns the lines below it to that schema
until the next header.
"""

import re
from dataclasses import dataclass, field

from gradesheet_ocr.utils.arabic import INVISIBLE_RE
from gradesheet_ocr.utils.logger import get_logger

from .models import ColumnInfo, ColumnKind, HeaderAnalysis
from .row_parser import parse_row_into_cells
from .vocabulary import (
    SEPARATOR_PATTERN,
    classify_column,
    find_column_terms,
    has_column_vocabulary,
    has_mark_vocabulary,
    is_summary_row,
)

logger = get_logger(__name__)

_SEPARATOR_ROW_RE = re.compile(r"^[\s|\-_=+:.]+$")
_CONTENT_RE = re.compile(r"\w")


@dataclass
class TableSection:
    """Body rows governed by one header (``None`` when no header was found)."""

    header: HeaderAnalysis | None
    rows: list[str] = field(default_factory=list)


class TableStructureAnalyzer:
    """Locate header sections and split body rows between them.

    Args:
        duplicate_distance: Headers this many lines or fewer below the
            previous header are treated as repeats and skipped.
    """

    def __init__(self, duplicate_distance: int = 2) -> None:
        self.duplicate_distance = duplicate_distance

    def analyze(self, lines: list[str]) -> list[TableSection]:
        """Split OCR lines into header sections.

        Args:
            lines: OCR text split into lines.

        Returns:
            One section per distinct header, in document order. Without
            any header, a single schema-less section holds every data row.
        """
        cleaned = [INVISIBLE_RE.sub("", line).strip() for line in lines]
        headers = self.detect_headers(cleaned)

        if not headers:
            rows = [line for line in cleaned if self.is_data_row(line)]
            logger.info("No header row found, %d candidate rows", len(rows))
            return [TableSection(None, rows)] if rows else []

        sections: list[TableSection] = []
        for k, header in enumerate(headers):
            end = headers[k + 1].line_index if k + 1 < len(headers) else len(cleaned)
            rows = [
                line
                for line in cleaned[header.line_index + 1 : end]
                if self.is_data_row(line)
            ]
            sections.append(TableSection(header, rows))

        logger.info(
            "Found %d header section(s) with %d rows",
            len(sections),
            sum(len(s.rows) for s in sections),
        )
        return sections

    def detect_headers(self, lines: list[str]) -> list[HeaderAnalysis]:
        """Return the distinct header rows among ``lines``."""
        headers: list[HeaderAnalysis] = []
        for i, line in enumerate(lines):
            if not self.is_header_candidate(line):
                continue
            analysis = self.analyze_header(line, i)
            if analysis is None:
                continue
            if headers and i - headers[-1].line_index <= self.duplicate_distance:
                logger.debug("Skipping repeated header at line %d", i)
                continue
            headers.append(analysis)
        return headers

    def is_header_candidate(self, line: str) -> bool:
        """A line naming mark columns, or a delimited line naming name/number columns."""
        if not line or _SEPARATOR_ROW_RE.match(line):
            return False
        if has_mark_vocabulary(line):
            return True
        return bool(SEPARATOR_PATTERN.search(line)) and has_column_vocabulary(line)

    def analyze_header(self, line: str, line_index: int) -> HeaderAnalysis | None:
        """Build the column schema of a header row.

        Delimited headers are split like body rows so that column
        positions match; single-spaced headers are tokenized against the
        column vocabulary.

        Returns:
            The header analysis, or ``None`` when no column is recognized.
        """
        if SEPARATOR_PATTERN.search(line):
            titles = parse_row_into_cells(line)
        else:
            titles = find_column_terms(line)

        columns: list[ColumnInfo] = []
        for index, title in enumerate(titles):
            kind, mark_type = classify_column(title)
            columns.append(ColumnInfo(index, title, kind, mark_type))

        if not any(c.kind != ColumnKind.OTHER for c in columns):
            return None
        return HeaderAnalysis(line_index=line_index, columns=columns)

    def is_data_row(self, line: str) -> bool:
        """Body rows: not empty, not rulings, not headers, not summaries."""
        if not line or _SEPARATOR_ROW_RE.match(line):
            return False
        if not _CONTENT_RE.search(line):
            return False
        if is_summary_row(line):
            return False
        return not self.is_header_candidate(line)
