import logging
import os
import re
from typing import Dict, List, Optional, Sequence, Tuple

from models import AcquisitionGroup, CalibrationBlock, CalibrationLog, ResolutionContext
from search_functions import DirectoryPrompter, NoPrompter, find_recursive, prompt_for_file, sibling_dir
from xisf_functions import read_frame_count

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Matches light groups to calibration blocks and counts master frames.
# 1. Registered frame -> calibrated frame by the WBPP '_c' suffix.
# 2. Master frame counts from the recorded path, the master directory, the caches or a prompt.
# 3. Master bias found through the flat that used it, external flats reported.
# Author : SDG
#

CALIBRATED_DIR = 'calibrated'
MASTER_DIR = 'master'

# A calibration block and the log it was read from
BlockRef = Tuple[CalibrationBlock, str]

# '_c' at the end of the stem or before the next '_' token
CALIBRATED_SUFFIX_RE = re.compile(r'_c(?=_|$)')

def calibrated_basename(registered_path: str) -> Optional[str]:
    """Returns the name WBPP gave the calibrated frame a registered frame was made from.

    'M31_Red_001_c_cc_r.xisf' gives 'M31_Red_001_c.xisf'. Names with no
    standalone '_c' token, such as 'M31_Red_001_calibrated.xisf', give None.
    """
    stem = os.path.splitext(os.path.basename(registered_path))[0]
    matches = list(CALIBRATED_SUFFIX_RE.finditer(stem))
    if not matches:
        return None
    return stem[:matches[-1].end()] + '.xisf'


class CalibrationResolver:
    """Fills in the darks, flats and bias counts of acquisition groups.

    User facing problems are collected in `warnings`.
    """

    def __init__(self, context: ResolutionContext, logger: logging.Logger,
                 prompter: Optional[DirectoryPrompter] = None):
        if not isinstance(logger, logging.Logger):
            raise ValueError("logger must be a logging.Logger instance")
        self.context = context
        self.logger = logger
        self.prompter = prompter or NoPrompter()
        self.warnings: List[str] = []
        self.count_cache: Dict[str, int] = {}

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)
            self.logger.warning(message)

    def resolve(self, groups: Sequence[AcquisitionGroup], calibration_logs: Sequence[CalibrationLog]) -> int:
        """Matches every group that is missing a count to its calibration block.

        Args:
            groups: Acquisition groups, with frame paths already resolved.
            calibration_logs: Calibration blocks parsed from every loaded log.

        Returns:
            int: Number of groups matched to a calibration block.
        """
        self.context.begin_batch()
        self.count_cache = {}

        index, by_directory = self.build_index(calibration_logs)
        self.context.calibrated_dirs.update(by_directory.keys())
        flat_to_bias = self.build_flat_links(calibration_logs)
        for flat_name in self.external_flats(calibration_logs, flat_to_bias):
            self.warn(f"Master flat {flat_name} was not made in any loaded log, its bias count cannot be determined")

        matched = 0
        unmatched_labels = []
        for group in groups:
            if group.darks >= 0 and group.flats >= 0 and group.bias >= 0:
                continue
            found = self.match_group(group, index, by_directory)
            if found is None:
                unmatched_labels.append(f"{group.target or os.path.basename(group.source_log_file)} / {group.filter}")
                continue
            block, log_path = found
            self.apply_block(group, block, log_path, flat_to_bias)
            matched += 1

        if unmatched_labels:
            self.warn("No calibration block matched: " + ", ".join(unmatched_labels))
        self.logger.info(f"Calibration resolution: {matched} groups matched, {len(unmatched_labels)} unmatched")
        return matched

    def build_index(self, calibration_logs: Sequence[CalibrationLog]) -> Tuple[Dict[str, BlockRef], Dict[str, Optional[BlockRef]]]:
        """Indexes calibration blocks by calibrated file name and by output directory.

        Returns:
            Lower case calibrated file names mapped to (block, log path), and
            calibrated output directories mapped to the one block that wrote
            there, or None when several blocks share the directory.
        """
        index: Dict[str, BlockRef] = {}
        by_directory: Dict[str, Optional[BlockRef]] = {}
        for calibration_log in calibration_logs:
            for block in calibration_log.blocks:
                ref = (block, calibration_log.log_path)
                for path in block.calibrated_files:
                    index.setdefault(os.path.basename(path).lower(), ref)
                    directory = os.path.dirname(path)
                    if not directory:
                        continue
                    if directory not in by_directory:
                        by_directory[directory] = ref
                    elif by_directory[directory] is not None and by_directory[directory][0] is not block:
                        by_directory[directory] = None
        return index, by_directory

    @staticmethod
    def build_flat_links(calibration_logs: Sequence[CalibrationLog]) -> Dict[str, str]:
        """Maps lower case master flat names to the master bias used to make them."""
        links: Dict[str, str] = {}
        for calibration_log in calibration_logs:
            for flat_block in calibration_log.flat_blocks:
                if flat_block.master_flat_path:
                    key = os.path.basename(flat_block.master_flat_path).lower()
                    links.setdefault(key, flat_block.master_bias_path)
        return links

    @staticmethod
    def external_flats(calibration_logs: Sequence[CalibrationLog], flat_to_bias: Dict[str, str]) -> List[str]:
        """Names of master flats used by light calibration blocks but made outside the loaded logs."""
        names = []
        seen = set()
        for calibration_log in calibration_logs:
            for block in calibration_log.blocks:
                name = os.path.basename(block.master_flat_path)
                key = name.lower()
                if name and key not in flat_to_bias and key not in seen:
                    seen.add(key)
                    names.append(name)
        return names

    def match_group(self, group: AcquisitionGroup, index: Dict[str, BlockRef],
                    by_directory: Dict[str, Optional[BlockRef]]) -> Optional[BlockRef]:
        """Returns the block that produced the first correlatable frame of the group."""
        for path in group.frame_paths:
            name = calibrated_basename(path)
            if not name:
                continue
            hit = index.get(name.lower())
            if hit is None:
                found = self.find_calibrated_file(name, group.source_log_file)
                if found:
                    # The log may not list every output, the block is known by where it wrote
                    hit = by_directory.get(os.path.dirname(found))
            if hit is not None:
                self.logger.info(f"{group.target} / {group.filter} calibrated by block in {hit[1]} (via {name})")
                return hit
        return None

    def find_calibrated_file(self, name: str, log_path: str) -> Optional[str]:
        cancel = self.context.cancel
        for directory in sorted(self.context.calibrated_dirs):
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate
        calibrated = sibling_dir(log_path, CALIBRATED_DIR)
        found = find_recursive(calibrated, name, cancel)
        if found:
            self.context.calibrated_dirs.add(os.path.dirname(found))
        return found

    def apply_block(self, group: AcquisitionGroup, block: CalibrationBlock, log_path: str,
                    flat_to_bias: Dict[str, str]) -> None:
        if group.darks < 0 and block.master_dark_path:
            group.darks = self.cached_count(block.master_dark_path, log_path)
        if group.flats < 0 and block.master_flat_path:
            group.flats = self.cached_count(block.master_flat_path, log_path)
        if group.bias >= 0:
            return

        bias_path = ''
        if block.master_flat_path:
            flat_name = os.path.basename(block.master_flat_path).lower()
            if flat_name not in flat_to_bias:
                # External flat, already reported
                return
            bias_path = flat_to_bias[flat_name]
        if not bias_path:
            bias_path = block.master_bias_path
        if bias_path:
            group.bias = self.cached_count(bias_path, log_path)

    def cached_count(self, master_path: str, log_path: str) -> int:
        key = master_path.lower()
        if key not in self.count_cache:
            self.count_cache[key] = self.master_count(master_path, log_path)
        return self.count_cache[key]

    def master_count(self, master_path: str, log_path: str) -> int:
        """Returns the number of frames in a master, or -1 if it cannot be found or read."""
        found = self.locate_master(master_path, log_path)
        if not found:
            self.logger.warning(f"Master frame not found: {master_path}")
            return -1
        count = read_frame_count(found, self.logger)
        return count if count is not None else -1

    def locate_master(self, master_path: str, log_path: str) -> Optional[str]:
        if os.path.isfile(master_path):
            return master_path

        name = os.path.basename(master_path)
        cache = self.context.masters
        cancel = self.context.cancel

        found = find_recursive(sibling_dir(log_path, MASTER_DIR), name, cancel)
        if found:
            cache.remember(os.path.dirname(found))
            return found

        for directory in sorted(cache.primary):
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate

        for root in cache.secondary:
            found = find_recursive(root, name, cancel)
            if found:
                cache.remember(os.path.dirname(found))
                return found

        if self.context.skip_prompts or cancel.is_set():
            return None
        start_dir = sibling_dir(log_path, MASTER_DIR)
        if not os.path.isdir(start_dir):
            start_dir = os.path.dirname(os.path.abspath(log_path))
        found, root = prompt_for_file(self.prompter, master_path, start_dir, self.logger, cancel)
        if not found:
            self.logger.info("Master frame prompts suppressed for the rest of this import")
            self.context.skip_prompts = True
            return None
        # Later masters are searched for under the whole chosen root
        cache.remember(root, searchable=True)
        cache.remember(os.path.dirname(found))
        return found
