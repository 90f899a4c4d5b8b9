import threading
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Set

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Data model for WBPP log based acquisition records.
# Author : SDG
#

@dataclass
class FrameHeader:
    """Metadata read from the FITSKeyword entries of a single light frame."""
    date: Optional[date] = None
    gain: Optional[int] = None
    sensor_temp: Optional[int] = None
    filter: str = ''
    object: str = ''
    amb_temp: Optional[float] = None


@dataclass
class AcquisitionGroup:
    """One 'integration of Light frames' block from a WBPP log.

    The per-frame lists (frame_resolved, frame_dates, frame_gains,
    frame_sensor_temps, frame_amb_temps) are always the same length as
    frame_paths. Calibration counts of -1 mean unknown.
    """
    filter: str = ''
    exposure_sec: float = 0.0
    binning: int = 1
    target: str = ''
    target_from_log: bool = False
    target_from_header: bool = False
    filter_from_header: bool = False
    source_log_file: str = ''
    frame_paths: List[str] = field(default_factory=list)
    frame_resolved: List[bool] = field(default_factory=list)
    frame_dates: List[Optional[date]] = field(default_factory=list)
    frame_gains: List[Optional[int]] = field(default_factory=list)
    frame_sensor_temps: List[Optional[int]] = field(default_factory=list)
    frame_amb_temps: List[Optional[float]] = field(default_factory=list)
    darks: int = -1
    flats: int = -1
    bias: int = -1

    def reset_frames(self) -> None:
        # Size every per-frame list to the path list
        count = len(self.frame_paths)
        self.frame_resolved = [False] * count
        self.frame_dates = [None] * count
        self.frame_gains = [None] * count
        self.frame_sensor_temps = [None] * count
        self.frame_amb_temps = [None] * count

    @property
    def frame_count(self) -> int:
        return len(self.frame_paths)

    @property
    def fully_resolved(self) -> bool:
        return all(self.frame_resolved)

    def apply_header(self, index: int, header: FrameHeader) -> None:
        """Stores a frame header against frame `index`.

        The filter is taken from the first header that reports one. The
        OBJECT value only becomes the target when no log keyword supplied one
        and no earlier header did.
        """
        self.frame_resolved[index] = True
        self.frame_dates[index] = header.date
        self.frame_gains[index] = header.gain
        self.frame_sensor_temps[index] = header.sensor_temp
        self.frame_amb_temps[index] = header.amb_temp

        if header.filter and not self.filter_from_header:
            self.filter = header.filter
            self.filter_from_header = True

        if header.object and not self.target_from_log and not self.target_from_header:
            self.target = header.object
            self.target_from_header = True


@dataclass
class CalibrationBlock:
    """One 'calibration of Light frames' block."""
    master_dark_path: str = ''
    master_flat_path: str = ''
    master_bias_path: str = ''
    calibrated_files: List[str] = field(default_factory=list)


@dataclass
class FlatBlock:
    """Links a master flat to the master bias used to calibrate its flats."""
    master_flat_path: str = ''
    master_bias_path: str = ''

    @property
    def is_empty(self) -> bool:
        return not self.master_flat_path and not self.master_bias_path


@dataclass
class CalibrationLog:
    """Calibration and flat blocks parsed from one log file."""
    log_path: str
    blocks: List[CalibrationBlock] = field(default_factory=list)
    flat_blocks: List[FlatBlock] = field(default_factory=list)


@dataclass
class LocationCache:
    """Directories that have held frames before.

    primary holds exact directories checked by direct file lookup, secondary
    holds roots searched recursively, in the order they were supplied.
    """
    primary: Set[str] = field(default_factory=set)
    secondary: List[str] = field(default_factory=list)

    def remember(self, directory: str, searchable: bool = False) -> None:
        self.primary.add(directory)
        if searchable and directory not in self.secondary:
            self.secondary.append(directory)


@dataclass
class ResolutionContext:
    """Search state shared by the resolvers for the life of a session."""
    frames: LocationCache = field(default_factory=LocationCache)
    masters: LocationCache = field(default_factory=LocationCache)
    calibrated_dirs: Set[str] = field(default_factory=set)
    skip_prompts: bool = False
    cancel: threading.Event = field(default_factory=threading.Event)

    def begin_batch(self) -> None:
        # A cancelled prompt only silences the batch it happened in
        self.skip_prompts = False
