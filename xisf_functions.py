import logging
import math
import re
import struct
import xml.etree.ElementTree as ET
from datetime import timedelta
from typing import Dict, Iterator, Optional, Tuple
from dateutil.parser import isoparse

from models import FrameHeader

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 XISF readers for master frame counts and light frame headers.
# 1. Frame counts read from the images table, its entity encoded form or the legacy HISTORY keyword.
# 2. Light frame headers read from FITSKeyword elements with an early exit.
# Author : SDG
#

XISF_SIGNATURE = b'XISF0100'
# Signature, header length and reserved field
PREAMBLE_BYTES = 16
# Master frame scans never read past this point
SCAN_BYTES = 256 * 1024
# Light frame headers larger than this are treated as corrupt
MAX_HEADER_BYTES = 16 * 1024 * 1024

ENCODED_TABLE_RE = re.compile(r'&lt;table\s+id=&quot;images&quot;\s+rows=&quot;(\d+)&quot;', re.IGNORECASE)
LEGACY_COUNT_RE = re.compile(r'ImageIntegration\.numberOfImages:\s*(\d+)')

# FITS keyword name -> FrameHeader field
WANTED_KEYWORDS = {
    'DATE-LOC': 'date',
    'GAIN': 'gain',
    'SET-TEMP': 'sensor_temp',
    'FILTER': 'filter',
    'OBJECT': 'object',
    'AMBTEMP': 'amb_temp',
}

def round_half_away(value: float) -> int:
    """Rounds to the nearest integer with halves rounded away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))

def read_xisf_preamble(file_path: str, logger: logging.Logger, max_bytes: Optional[int] = None) -> Optional[Tuple[int, bytes]]:
    """Reads the start of an XISF file and validates its signature.

    Args:
        file_path (str): Path to the XISF file.
        logger (logging.Logger): Logger instance for logging messages.
        max_bytes (int, optional): Maximum number of bytes to read after the preamble.
            When None the declared XML header length is read.

    Returns:
        Optional[Tuple[int, bytes]]: The declared XML header length and the bytes read after
            the 16 byte preamble, or None if the file is unreadable or not an XISF file.
    """
    try:
        with open(file_path, 'rb') as file:
            preamble = file.read(PREAMBLE_BYTES)
            # Validate signature
            if len(preamble) < PREAMBLE_BYTES or preamble[:8] != XISF_SIGNATURE:
                logger.debug(f"{file_path} is not an XISF file")
                return None
            # Read header length (4 bytes, little endian), the reserved field is ignored
            header_length = struct.unpack('<I', preamble[8:12])[0]
            if max_bytes is None:
                if header_length == 0 or header_length > MAX_HEADER_BYTES:
                    logger.debug(f"Implausible XISF header length {header_length} in {file_path}")
                    return None
                return header_length, file.read(header_length)
            return header_length, file.read(max(0, max_bytes - PREAMBLE_BYTES))

    except OSError as e:
        logger.debug(f"Error reading XISF file {file_path}: {str(e)}")
        return None

def iter_xml_events(data: bytes, events: Tuple[str, ...] = ('start',)) -> Iterator[Tuple[str, ET.Element]]:
    """Yields (event, element) pairs from a possibly truncated XML document.

    Parsing stops quietly at the first syntax error, so a header cut short by the
    scan budget still yields every element before the damage.
    """
    parser = ET.XMLPullParser(events=events)
    parser.feed(data.rstrip(b'\x00'))
    try:
        for event, element in parser.read_events():
            yield event, element
    except ET.ParseError:
        return

def local_name(tag: str) -> str:
    # Drop any {namespace} prefix
    return tag.rsplit('}', 1)[-1]

def count_from_xml(data: bytes) -> Optional[int]:
    """Finds <table id="images" rows="N"> in an XML header, including the nested
    processing history document PixInsight stores as element text or attribute."""
    for event, element in iter_xml_events(data, events=('start', 'end')):
        if event == 'start':
            if local_name(element.tag).lower() == 'table' and element.get('id') == 'images':
                rows = parse_positive_int(element.get('rows'))
                if rows:
                    return rows
            continue
        for text in [element.text] + list(element.attrib.values()):
            if text and '<table' in text:
                nested = count_from_xml(text.encode('utf-8'))
                if nested:
                    return nested
    return None

def parse_positive_int(value: Optional[str]) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None

def scan_frame_count(data: bytes, logger: logging.Logger) -> Optional[int]:
    """Searches a block of header bytes for the number of integrated frames.

    Args:
        data (bytes): XML header bytes, or raw bytes from the start of the file.
        logger (logging.Logger): Logger instance for logging messages.

    Returns:
        Optional[int]: The positive frame count, or None when no strategy matches.
    """
    # Parsed XML element
    count = count_from_xml(data)
    if count:
        logger.debug(f"Frame count {count} read from images table")
        return count

    text = data.decode('latin-1')

    # Entity encoded inside another attribute
    match = ENCODED_TABLE_RE.search(text)
    if match:
        count = parse_positive_int(match.group(1))
        if count:
            logger.debug(f"Frame count {count} read from encoded images table")
            return count

    # Legacy HISTORY keyword
    match = LEGACY_COUNT_RE.search(text)
    if match:
        count = parse_positive_int(match.group(1))
        if count:
            logger.debug(f"Frame count {count} read from ImageIntegration.numberOfImages")
            return count

    return None

def read_frame_count(file_path: str, logger: logging.Logger) -> Optional[int]:
    """Reads the number of frames integrated into a master calibration frame.

    At most SCAN_BYTES are read from the start of the file. When the declared
    XML header fits inside that budget it is searched first, then whatever raw
    bytes the budget holds.

    Args:
        file_path (str): Path to the master XISF file.
        logger (logging.Logger): Logger instance for logging messages.

    Returns:
        Optional[int]: Number of integrated frames, or None if the file is not an XISF
            master or no count could be found.
    """
    result = read_xisf_preamble(file_path, logger, max_bytes=SCAN_BYTES)
    if result is None:
        return None
    header_length, data = result

    if 0 < header_length <= len(data):
        count = scan_frame_count(data[:header_length], logger)
        if count:
            logger.info(f"{file_path}: {count} frames")
            return count
        if header_length == len(data):
            return None

    count = scan_frame_count(data, logger)
    if count:
        logger.info(f"{file_path}: {count} frames")
    else:
        logger.warning(f"No frame count found in {file_path}")
    return count

def clean_value(value: Optional[str]) -> str:
    # FITS string values arrive wrapped in single quotes
    return (value or '').strip().strip("'").strip()

def parse_capture_date(value: str):
    """Parses DATE-LOC and returns the date of the night the frame belongs to.

    Twelve hours are subtracted before the date is taken so frames captured
    after local midnight stay with the evening the session started.
    """
    try:
        captured = isoparse(clean_value(value))
    except (ValueError, OverflowError):
        return None
    return (captured - timedelta(hours=12)).date()

def parse_number(value: Optional[str]) -> Optional[float]:
    try:
        number = float(clean_value(value))
    except ValueError:
        return None
    return number if math.isfinite(number) else None

def collect_keywords(data: bytes) -> Dict[str, str]:
    """Collects the first non-empty value of each wanted FITSKeyword, stopping once all are seen."""
    found: Dict[str, str] = {}
    for _, element in iter_xml_events(data):
        if local_name(element.tag) != 'FITSKeyword':
            continue
        name = (element.get('name') or '').strip().upper()
        value = element.get('value') or ''
        if name in WANTED_KEYWORDS and name not in found and clean_value(value):
            found[name] = value
            if len(found) == len(WANTED_KEYWORDS):
                break
    return found

def read_frame_header(file_path: str, logger: logging.Logger) -> Optional[FrameHeader]:
    """Reads acquisition metadata from the XML header of a light frame.

    Args:
        file_path (str): Path to the XISF light frame.
        logger (logging.Logger): Logger instance for logging messages.

    Returns:
        Optional[FrameHeader]: The header values, or None if the file cannot be read, is not
            an XISF file or has no DATE-LOC keyword.
    """
    result = read_xisf_preamble(file_path, logger)
    if result is None:
        return None

    keywords = collect_keywords(result[1])
    if 'DATE-LOC' not in keywords:
        logger.warning(f"No DATE-LOC keyword in {file_path}")
        return None

    header = FrameHeader(date=parse_capture_date(keywords['DATE-LOC']))
    if header.date is None:
        logger.warning(f"Unparseable DATE-LOC '{keywords['DATE-LOC']}' in {file_path}")

    gain = parse_number(keywords.get('GAIN'))
    if gain is not None:
        header.gain = round_half_away(gain)
    set_temp = parse_number(keywords.get('SET-TEMP'))
    if set_temp is not None:
        header.sensor_temp = round_half_away(set_temp)
    header.amb_temp = parse_number(keywords.get('AMBTEMP'))
    header.filter = clean_value(keywords.get('FILTER'))
    header.object = clean_value(keywords.get('OBJECT'))

    logger.debug(f"Header read from {file_path}: {header}")
    return header
