import logging
import os
import pandas as pd
from datetime import datetime
from typing import Sequence, Union

utils_version = '2.0.1'

def initialise_logging(log_filename: str, logger: logging.Logger = None, debug: bool = False) -> logging.Logger:
    """Initializes logging for the application.

    Creates a logger that writes to a specified file with a consistent format.
    Clears the existing log file and configures the logger with a file handler.

    Args:
        log_filename (str): Path to the log file.
        logger (logging.Logger, optional): Logger for pre-initialization errors. Defaults to None
        debug (bool, optional): Log at DEBUG instead of INFO. Defaults to False.

    Returns:
        logging.Logger: Configured logger object.

    Raises:
        ValueError: If log_filename is empty or not a string.
        OSError: If unable to create or write to the log file.
    """
    try:
        if not isinstance(log_filename, str) or not log_filename.strip():
            error_msg = "log_filename must be a non-empty string"
            if logger:
                logger.error(error_msg)
            raise ValueError(error_msg)

        # Ensure the directory for the log file exists
        log_dir = os.path.dirname(log_filename)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        # Clear existing log file
        with open(log_filename, 'w', encoding='utf-8') as f:
            f.write('')

        new_logger = logging.getLogger(__name__)
        for handler in list(new_logger.handlers):
            handler.close()
        new_logger.handlers.clear()
        new_logger.setLevel(logging.DEBUG if debug else logging.INFO)

        handler = logging.FileHandler(log_filename, encoding='utf-8')
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - Line: %(lineno)d - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        new_logger.addHandler(handler)

        new_logger.info("Logging initialized successfully")
        return new_logger

    except Exception as e:
        error_msg = f"Critical error initializing logging: {str(e)}"
        if logger:
            logger.error(error_msg)
        raise type(e)(error_msg) from e

def seconds_to_hms(seconds: Union[int, float], logger: logging.Logger, aligned: bool = False) -> str:
    """Converts seconds to a string formatted as hours, minutes, and seconds.

    Args:
        seconds (Union[int, float]): Number of seconds to convert.
        logger (logging.Logger): Logger for logging messages.
        aligned (bool, optional): If True, returns aligned format with fixed-width fields.
            Defaults to False.

    Returns:
        str: Formatted string in hours, minutes, and seconds.
    """
    try:
        if not isinstance(seconds, (int, float)):
            raise ValueError(f"seconds must be a number, got {type(seconds).__name__}")
        if seconds < 0:
            raise ValueError("seconds cannot be negative")

        total = int(round(seconds))
        hours, remainder = divmod(total, 3600)
        minutes, secs = divmod(remainder, 60)

        if aligned:
            return f"{hours:>4} hrs {minutes:>2} mins {secs:>2} secs"
        return f"{hours} hrs {minutes} mins {secs} secs"

    except ValueError as e:
        logger.error(f"Error converting {seconds} seconds to HMS: {str(e)}")
        return "Invalid time format"

def summarize_session(rows_df: pd.DataFrame, logger: logging.Logger, log_files: Sequence[str],
                      warnings: Sequence[str] = ()) -> str:
    """Generates the integration summary of the loaded logs.

    Lists, per target, the frames and integration time of each filter and the
    target total, followed by any warnings raised while resolving.

    Args:
        rows_df (pd.DataFrame): Rows from processing_functions.aggregate_rows.
        logger (logging.Logger): Logger for logging messages.
        log_files (Sequence[str]): Log files that were processed.
        warnings (Sequence[str], optional): Warnings to append to the summary.

    Returns:
        str: Formatted session summary.
    """
    logger.info("Generating integration summary")
    current_time = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    summary_parts = [f"Integration summary\nGenerated {current_time}\n"]
    summary_parts.append("Log files:\n" + "".join(f"\t{os.path.basename(path)}\n" for path in log_files))

    if rows_df.empty:
        logger.warning("No acquisition rows to summarise")
        summary_parts.append("\nNo acquisition data available\n")
    else:
        totals = rows_df.assign(seconds=rows_df['number'] * rows_df['duration'])
        for target, target_rows in totals.groupby('target', sort=False):
            summary_parts.append(f"\nTarget: {target}\n")
            per_filter = target_rows.groupby('filterName', sort=False).agg(frames=('number', 'sum'), seconds=('seconds', 'sum'))
            for filter_name, values in per_filter.iterrows():
                summary_parts.append(f"\t{filter_name:<12}{int(values['frames']):>6} frames "
                                     f"{seconds_to_hms(float(values['seconds']), logger, aligned=True)}\n")
            summary_parts.append(f"\t{'Total':<12}{int(per_filter['frames'].sum()):>6} frames "
                                 f"{seconds_to_hms(float(per_filter['seconds'].sum()), logger, aligned=True)}\n")

    if warnings:
        summary_parts.append("\nWarnings:\n" + "".join(f"\t{warning}\n" for warning in warnings))

    logger.info("Integration summary generated")
    return "".join(summary_parts)
