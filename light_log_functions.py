import logging
import os
import re
from typing import List, Optional, Sequence

from log_functions import BlockScanner, read_log_lines
from models import AcquisitionGroup

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Reads Light integration blocks from WBPP logs.
# Author : SDG
#
# Date: Sunday 18th October 2026
# Modification : v2.0.1 FastIntegration FI.targets image lists.
# Author : SDG
#

BEGIN_RE = re.compile(r'\* Begin (?:fast )?integration of Light frames')
END_RE = re.compile(r'\* End (?:fast )?integration of Light frames')
FILTER_RE = re.compile(r'Filter\s*:\s*(.+)')
EXPOSURE_RE = re.compile(r'Exposure\s*:\s*([\d.]+)s')
BINNING_RE = re.compile(r'BINNING\s*:\s*(\d+)')
KEYWORDS_RE = re.compile(r'Keywords\s*:\s*\[(.+)\]')
# ImageIntegration and FastIntegration write their frame lists differently
IMAGE_LIST_RES = (re.compile(r'II\.images\s*=\s*\['), re.compile(r'FI\.targets\s*=\s*\['))
PATH_RE = re.compile(r'\[(?:true|false),\s*"([^"]+\.xisf)"')

# Lines that identify a PixInsight log in its first few lines
LOG_SIGNATURES = ('PixInsight Core', 'Weighted Batch Preprocessing', 'fast integration')
SIGNATURE_LINES = 10

def can_parse(log_path: str, logger: logging.Logger) -> bool:
    """Returns True when one of the first ten lines identifies a PixInsight log."""
    try:
        with open(log_path, 'r', encoding='utf-8', errors='replace') as file:
            for _, line in zip(range(SIGNATURE_LINES), file):
                if any(signature in line for signature in LOG_SIGNATURES):
                    return True
    except OSError as e:
        logger.error(f"Cannot open {log_path}: {str(e)}")
    return False

def target_pattern(keywords: Sequence[str]) -> Optional[re.Pattern]:
    """Builds the pattern matching 'KEYWORD: value' for any of the user's target keywords."""
    keywords = [str(keyword).strip() for keyword in keywords if str(keyword).strip()]
    if not keywords:
        return None
    alternatives = '|'.join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf'(?:{alternatives})\s*:\s*([^\],]+)', re.IGNORECASE)

def extract_xisf_paths(lines: Sequence[str], start: int) -> List[str]:
    """Collects the .xisf paths of an image list opened on line `start`.

    Collection stops at the line that closes the list with '];', which may be
    the opening line itself.
    """
    paths = []
    for line in lines[start:]:
        paths.extend(PATH_RE.findall(line))
        if '];' in line:
            break
    return paths


class LightLogParser:
    """Extracts one AcquisitionGroup per Light integration block of a WBPP log.

    Failures are recorded in `error` instead of being raised.
    """

    def __init__(self, logger: logging.Logger, target_keywords: Sequence[str] = ()):
        if not isinstance(logger, logging.Logger):
            raise ValueError("logger must be a logging.Logger instance")
        self.logger = logger
        self.target_re = target_pattern(target_keywords)
        self.error = ''

    def parse(self, log_path: str) -> List[AcquisitionGroup]:
        self.error = ''
        groups: List[AcquisitionGroup] = []

        try:
            lines = read_log_lines(log_path, self.logger)
        except OSError as e:
            self.error = f"Cannot open file: {log_path}"
            self.logger.error(f"{self.error} ({str(e)})")
            return groups

        scanner = BlockScanner(lines, BEGIN_RE, END_RE, self.logger, 'Light integration')
        for block_index, (begin, end) in enumerate(scanner):
            group = self.parse_block(lines[begin:end + 1], block_index)
            if group is None:
                self.logger.warning(f"Light block {block_index} at line {begin + 1} rejected, no .xisf paths found")
                continue
            group.source_log_file = log_path
            self.logger.info(f"Light block {block_index}: target='{group.target or '(none)'}' "
                             f"filter='{group.filter or '(none)'}' exposure={group.exposure_sec}s "
                             f"binning={group.binning} frames={group.frame_count}")
            groups.append(group)

        if not groups and not self.error:
            self.error = "No Light integration blocks found in log."
            self.logger.warning(f"{log_path}: {self.error}")

        return groups

    def parse_block(self, lines: Sequence[str], block_index: int) -> Optional[AcquisitionGroup]:
        """Reads the fields of one Begin..End block, or returns None if it lists no frames."""
        group = AcquisitionGroup()
        image_list_start = None

        for index, line in enumerate(lines):
            match = FILTER_RE.search(line)
            if match:
                group.filter = match.group(1).strip()
            match = EXPOSURE_RE.search(line)
            if match:
                try:
                    group.exposure_sec = float(match.group(1))
                except ValueError:
                    self.logger.warning(f"Light block {block_index}: bad exposure '{match.group(1)}'")
            match = BINNING_RE.search(line)
            if match:
                group.binning = int(match.group(1))
            if KEYWORDS_RE.search(line):
                target = self.extract_target(line)
                if target:
                    group.target = target
                    group.target_from_log = True
                else:
                    self.logger.debug(f"Light block {block_index}: no target keyword in '{line.strip()[:100]}'")
            if image_list_start is None and any(pattern.search(line) for pattern in IMAGE_LIST_RES):
                image_list_start = index

        if image_list_start is not None:
            group.frame_paths = extract_xisf_paths(lines, image_list_start)

        if not group.frame_paths:
            return None
        group.reset_frames()
        return group

    def extract_target(self, line: str) -> str:
        if self.target_re is None:
            return ''
        match = self.target_re.search(line)
        return match.group(1).strip() if match else ''

def parse_light_logs(log_paths: Sequence[str], target_keywords: Sequence[str], logger: logging.Logger):
    """Parses several logs, returning all groups and a list of per-file errors."""
    parser = LightLogParser(logger, target_keywords)
    groups: List[AcquisitionGroup] = []
    errors = []
    for log_path in log_paths:
        if not can_parse(log_path, logger):
            logger.warning(f"{log_path} does not look like a PixInsight log, parsing anyway")
        found = parser.parse(log_path)
        if parser.error:
            errors.append(f"{os.path.basename(log_path)}: {parser.error}")
        groups.extend(found)
    return groups, errors
