import logging
import re
from typing import List, Sequence

from log_functions import BlockScanner, find_line, read_log_lines
from models import CalibrationBlock, CalibrationLog, FlatBlock

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Reads Light and Flat calibration blocks from WBPP logs.
# 1. Master dark, flat and bias paths per Light calibration block.
# 2. Calibrated output files listed after each block.
# 3. Master flat to master bias links from Flat calibration and integration blocks.
# Author : SDG
#

LIGHT_CAL_BEGIN_RE = re.compile(r'\* Begin calibration of Light frames')
LIGHT_CAL_END_RE = re.compile(r'\* End calibration of Light frames')
CAL_FRAME_RE = re.compile(r'Calibration frame \d+:\s*.+\s*--->\s*(.+\.xisf)')

DARK_ENABLED_RE = re.compile(r'IC\.masterDarkEnabled\s*=\s*(true|false)')
FLAT_ENABLED_RE = re.compile(r'IC\.masterFlatEnabled\s*=\s*(true|false)')
DARK_PATH_RE = re.compile(r'IC\.masterDarkPath\s*=\s*"([^"]+)"')
FLAT_PATH_RE = re.compile(r'IC\.masterFlatPath\s*=\s*"([^"]+)"')
BIAS_PATH_RE = re.compile(r'IC\.masterBiasPath\s*=\s*"([^"]+)"')
BIAS_SUMMARY_RE = re.compile(r'Master bias:\s*(.+\.xisf)')

FLAT_CAL_BEGIN_RE = re.compile(r'\* Begin calibration of Flat frames')
FLAT_CAL_END_RE = re.compile(r'\* End calibration of Flat frames')
FLAT_INT_BEGIN_RE = re.compile(r'\* Begin integration of Flat frames')
FLAT_INT_END_RE = re.compile(r'\* End integration of Flat frames')
WRITING_MASTER_FLAT = 'Writing master Flat frame'
ADD_MASTER_RE = re.compile(r'Add the master file:\s*(.+\.xisf)')
# Lines after a Flat integration End marker that may still name the master
FLAT_LOOKAHEAD = 10

def first_capture(lines: Sequence[str], pattern: re.Pattern) -> str:
    for line in lines:
        match = pattern.search(line)
        if match:
            return match.group(1).strip()
    return ''

def find_bias_path(lines: Sequence[str]) -> str:
    """Returns the master bias named in a block.

    An IC.masterBiasPath assignment wins over a 'Master bias:' summary line,
    and a summary of 'none' is ignored.
    """
    path = first_capture(lines, BIAS_PATH_RE)
    if path:
        return path
    for line in lines:
        match = BIAS_SUMMARY_RE.search(line)
        if match:
            value = match.group(1).strip()
            if value and value.lower() != 'none':
                return value
    return ''

def enabled_flag(lines: Sequence[str], pattern: re.Pattern) -> bool:
    # Last assignment in the block wins
    enabled = False
    for line in lines:
        match = pattern.search(line)
        if match:
            enabled = match.group(1) == 'true'
    return enabled

def find_master_flat_path(lines: Sequence[str]) -> str:
    """Finds the master flat written by a Flat integration block."""
    path_on_next_line = False
    for raw in lines:
        line = raw.strip()
        if path_on_next_line:
            if not line:
                continue
            if line.endswith('.xisf'):
                return line
            path_on_next_line = False
        if WRITING_MASTER_FLAT in line:
            path_on_next_line = True
            continue
        match = ADD_MASTER_RE.search(line)
        if match:
            return match.group(1).strip()
    return ''


class CalibrationLogParser:
    """Reads the calibration blocks of a WBPP log.

    Failures are recorded in `error` instead of being raised.
    """

    def __init__(self, logger: logging.Logger):
        if not isinstance(logger, logging.Logger):
            raise ValueError("logger must be a logging.Logger instance")
        self.logger = logger
        self.error = ''

    def parse(self, log_path: str) -> CalibrationLog:
        """Runs both block scans over one log file."""
        self.error = ''
        result = CalibrationLog(log_path=log_path)
        try:
            lines = read_log_lines(log_path, self.logger)
        except OSError as e:
            self.error = f"Cannot open file: {log_path}"
            self.logger.error(f"{self.error} ({str(e)})")
            return result

        result.blocks = self.parse_light_calibration(lines)
        result.flat_blocks = self.parse_flat_blocks(lines)
        self.logger.info(f"{log_path}: {len(result.blocks)} Light calibration blocks, "
                         f"{len(result.flat_blocks)} Flat blocks")
        return result

    def parse_light_calibration(self, lines: Sequence[str]) -> List[CalibrationBlock]:
        blocks = []
        scanner = BlockScanner(lines, LIGHT_CAL_BEGIN_RE, LIGHT_CAL_END_RE, self.logger, 'Light calibration')
        for begin, end in scanner:
            block = self.parse_light_calibration_block(lines[begin:end + 1])

            # Output list follows the End marker
            for line in lines[end + 1:]:
                if LIGHT_CAL_BEGIN_RE.search(line) or LIGHT_CAL_END_RE.search(line):
                    break
                match = CAL_FRAME_RE.search(line)
                if match:
                    block.calibrated_files.append(match.group(1).strip())

            self.logger.info(f"Light calibration block at line {begin + 1}: dark='{block.master_dark_path or '(none)'}' "
                             f"flat='{block.master_flat_path or '(none)'}' bias='{block.master_bias_path or '(none)'}' "
                             f"calibrated files={len(block.calibrated_files)}")
            blocks.append(block)
        return blocks

    def parse_light_calibration_block(self, lines: Sequence[str]) -> CalibrationBlock:
        block = CalibrationBlock(
            master_dark_path=first_capture(lines, DARK_PATH_RE),
            master_flat_path=first_capture(lines, FLAT_PATH_RE),
            master_bias_path=find_bias_path(lines),
        )
        if not enabled_flag(lines, DARK_ENABLED_RE) and block.master_dark_path:
            self.logger.debug(f"Master dark disabled, ignoring {block.master_dark_path}")
            block.master_dark_path = ''
        if not enabled_flag(lines, FLAT_ENABLED_RE) and block.master_flat_path:
            self.logger.debug(f"Master flat disabled, ignoring {block.master_flat_path}")
            block.master_flat_path = ''
        return block

    def parse_flat_blocks(self, lines: Sequence[str]) -> List[FlatBlock]:
        """Pairs each Flat calibration block with the Flat integration block after it."""
        flat_blocks = []
        count = len(lines)
        index = 0
        while index < count:
            cal_begin = find_line(lines, FLAT_CAL_BEGIN_RE, index)
            if cal_begin is None:
                break
            cal_end = find_line(lines, FLAT_CAL_END_RE, cal_begin + 1)
            if cal_end is None:
                self.logger.warning(f"No End marker for Flat calibration block starting at line {cal_begin + 1}")
                break

            block = FlatBlock(master_bias_path=find_bias_path(lines[cal_begin:cal_end + 1]))

            int_begin = find_line(lines, FLAT_INT_BEGIN_RE, cal_end + 1, stop_patterns=(FLAT_CAL_BEGIN_RE,))
            if int_begin is None:
                self.logger.warning(f"No Flat integration follows the Flat calibration block at line {cal_begin + 1}")
                index = cal_end + 1
            else:
                int_end = find_line(lines, FLAT_INT_END_RE, int_begin + 1)
                if int_end is None:
                    self.logger.warning(f"No End marker for Flat integration block starting at line {int_begin + 1}")
                    index = int_begin + 1
                else:
                    block.master_flat_path = find_master_flat_path(self.flat_integration_lines(lines, int_begin, int_end))
                    index = int_end + 1

            if block.is_empty:
                self.logger.debug(f"Flat block at line {cal_begin + 1} discarded, no master paths")
                continue
            self.logger.info(f"Flat block at line {cal_begin + 1}: flat='{block.master_flat_path or '(none)'}' "
                             f"bias='{block.master_bias_path or '(none)'}'")
            flat_blocks.append(block)
        return flat_blocks

    @staticmethod
    def flat_integration_lines(lines: Sequence[str], begin: int, end: int) -> List[str]:
        # The block plus a short window after its End marker
        block = list(lines[begin:end + 1])
        for line in lines[end + 1:end + 1 + FLAT_LOOKAHEAD]:
            if FLAT_CAL_BEGIN_RE.search(line) or FLAT_INT_BEGIN_RE.search(line):
                break
            block.append(line)
        return block

def parse_calibration_logs(log_paths: Sequence[str], logger: logging.Logger):
    """Parses several logs, returning a CalibrationLog per file and a list of errors."""
    parser = CalibrationLogParser(logger)
    results: List[CalibrationLog] = []
    errors: List[str] = []
    for log_path in log_paths:
        results.append(parser.parse(log_path))
        if parser.error:
            errors.append(parser.error)
    return results, errors
