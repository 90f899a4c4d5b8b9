import pandas as pd
import pytest

from utils import initialise_logging, seconds_to_hms, summarize_session

def test_seconds_to_hms(logger):
    assert seconds_to_hms(3725, logger) == "1 hrs 2 mins 5 secs"
    assert seconds_to_hms(59.6, logger) == "0 hrs 1 mins 0 secs"
    assert seconds_to_hms(3725, logger, aligned=True) == "   1 hrs  2 mins  5 secs"
    assert seconds_to_hms(-1, logger) == "Invalid time format"
    assert seconds_to_hms('10', logger) == "Invalid time format"

def test_summarize_session(logger):
    rows = pd.DataFrame({
        'target': ['M31', 'M31', 'M42'],
        'filterName': ['Ha', 'Ha', 'OIII'],
        'number': [10, 2, 4],
        'duration': [300, 300, 120],
    })
    summary = summarize_session(rows, logger, ['/logs/night1.log'], ['No calibration block matched: M42 / OIII'])
    assert "\tnight1.log\n" in summary
    assert "Target: M31" in summary
    assert "\tHa              12 frames    1 hrs  0 mins  0 secs\n" in summary
    assert "Target: M42" in summary
    assert "Warnings:\n\tNo calibration block matched: M42 / OIII\n" in summary

def test_summarize_empty_session(logger):
    summary = summarize_session(pd.DataFrame(), logger, [])
    assert "No acquisition data available" in summary
    assert "Warnings" not in summary

def test_initialise_logging(tmp_path):
    log_file = tmp_path / 'out' / 'WBPPLogUpload.log'
    logger = initialise_logging(str(log_file), debug=True)
    logger.debug("debug line")
    for handler in logger.handlers:
        handler.flush()
    text = log_file.read_text(encoding='utf-8')
    assert "Logging initialized successfully" in text
    assert "DEBUG - debug line" in text

def test_initialise_logging_rejects_empty_name():
    with pytest.raises(ValueError):
        initialise_logging('')
