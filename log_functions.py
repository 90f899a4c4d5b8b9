import logging
import re
from enum import Enum
from typing import Iterator, List, Optional, Pattern, Sequence, Tuple

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Shared WBPP log reading and block scanning.
# Author : SDG
#

# Leading "[2024-01-15 22:30:00] " token written by the PixInsight console
TIMESTAMP_RE = re.compile(r'^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] ')

def strip_timestamp(line: str) -> str:
    return TIMESTAMP_RE.sub('', line, count=1)

def read_log_lines(log_path: str, logger: logging.Logger) -> List[str]:
    """Reads a log file into a list of lines with console timestamps removed.

    Args:
        log_path (str): Path to the log file.
        logger (logging.Logger): Logger instance for logging messages.

    Returns:
        List[str]: The lines of the file without line endings or timestamps.

    Raises:
        OSError: If the file cannot be opened or read.
    """
    with open(log_path, 'rb') as file:
        raw = file.read()
    try:
        text = raw.decode('utf-8')
    except UnicodeDecodeError:
        logger.info(f"{log_path} is not UTF-8, reading as Latin-1")
        text = raw.decode('latin-1')
    lines = [strip_timestamp(line) for line in text.splitlines()]
    logger.info(f"Read {len(lines)} lines from {log_path}")
    return lines

def find_line(lines: Sequence[str], pattern: Pattern, start: int, stop: Optional[int] = None,
              stop_patterns: Sequence[Pattern] = ()) -> Optional[int]:
    """Returns the index of the first line at or after `start` matching `pattern`.

    The search ends without a match at `stop` or at the first line matching any
    of `stop_patterns`.
    """
    stop = len(lines) if stop is None else min(stop, len(lines))
    for index in range(start, stop):
        line = lines[index]
        if pattern.search(line):
            return index
        if any(stop_pattern.search(line) for stop_pattern in stop_patterns):
            return None
    return None


class ScanState(Enum):
    SEEKING = 'seeking'
    IN_BLOCK = 'in block'
    DONE = 'done'


class BlockScanner:
    """Finds Begin/End delimited blocks with a single forward cursor.

    Blocks are yielded as (begin, end) line indices in source order and never
    overlap. A Begin marker with no End marker after it ends the scan, and
    `unterminated_at` records the line of that Begin marker.
    """

    def __init__(self, lines: Sequence[str], begin_re: Pattern, end_re: Pattern,
                 logger: logging.Logger, label: str):
        self.lines = lines
        self.begin_re = begin_re
        self.end_re = end_re
        self.logger = logger
        self.label = label
        self.cursor = 0
        self.state = ScanState.SEEKING
        self.unterminated_at: Optional[int] = None

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        begin = 0
        while self.state is not ScanState.DONE:
            if self.state is ScanState.SEEKING:
                found = find_line(self.lines, self.begin_re, self.cursor)
                if found is None:
                    self.state = ScanState.DONE
                    continue
                begin = found
                self.state = ScanState.IN_BLOCK
            else:
                end = find_line(self.lines, self.end_re, begin + 1)
                if end is None:
                    self.unterminated_at = begin
                    self.logger.warning(f"No End marker for {self.label} block starting at line {begin + 1}, "
                                        f"remaining {self.label} blocks ignored")
                    self.state = ScanState.DONE
                    continue
                self.cursor = end + 1
                self.state = ScanState.SEEKING
                yield begin, end
