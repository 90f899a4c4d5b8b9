import logging
import os
import struct
import sys

import pytest

# Add the parent directory to sys.path so we can import the modules
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

XISF_NS = 'http://www.pixinsight.com/xisf'

def xisf_bytes(xml: str, declared_length=None) -> bytes:
    data = xml.encode('utf-8')
    length = len(data) if declared_length is None else declared_length
    return b'XISF0100' + struct.pack('<I', length) + b'\x00' * 4 + data

def frame_xml(keywords) -> str:
    entries = "".join(f'<FITSKeyword name="{name}" value="{value}" comment=""/>' for name, value in keywords)
    return (f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<xisf version="1.0" xmlns="{XISF_NS}"><Image geometry="8:8:1" sampleFormat="UInt16">'
            f'{entries}</Image></xisf>')

def master_xml(body: str) -> str:
    return (f'<?xml version="1.0" encoding="UTF-8"?>'
            f'<xisf version="1.0" xmlns="{XISF_NS}"><Image geometry="8:8:1">{body}</Image></xisf>')

@pytest.fixture
def logger():
    test_logger = logging.getLogger('wbpp-tests')
    test_logger.setLevel(logging.DEBUG)
    return test_logger

@pytest.fixture
def write_frame():
    """Writes a light frame with the given FITS keywords, creating parent directories."""
    def _write(path, date_loc="'2024-01-15T22:30:00.000'", gain='100', set_temp='-10.0',
               filter_name="'Ha'", obj="'M31'", amb_temp=None):
        keywords = [('DATE-LOC', date_loc), ('GAIN', gain), ('SET-TEMP', set_temp),
                    ('FILTER', filter_name), ('OBJECT', obj)]
        if amb_temp is not None:
            keywords.append(('AMBTEMP', amb_temp))
        keywords = [(name, value) for name, value in keywords if value is not None]
        os.makedirs(os.path.dirname(str(path)), exist_ok=True)
        with open(path, 'wb') as file:
            file.write(xisf_bytes(frame_xml(keywords)))
        return str(path)
    return _write

@pytest.fixture
def write_master():
    """Writes a master frame whose header holds an images table with `rows` rows."""
    def _write(path, rows):
        os.makedirs(os.path.dirname(str(path)), exist_ok=True)
        with open(path, 'wb') as file:
            file.write(xisf_bytes(master_xml(f'<table id="images" rows="{rows}"/>')))
        return str(path)
    return _write


class CannedPrompter:
    """Answers directory requests from a list and records every request."""

    def __init__(self, answers=()):
        self.answers = list(answers)
        self.requests = []

    def request_directory(self, missing_path, start_dir, message=None):
        self.requests.append((missing_path, start_dir, message))
        return self.answers.pop(0) if self.answers else None

@pytest.fixture
def prompter_factory():
    return CannedPrompter
