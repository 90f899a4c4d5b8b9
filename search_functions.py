import logging
import os
import threading
from typing import Optional, Tuple

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Depth limited file search and directory prompts.
# Author : SDG
#

# Directory levels below a search root that are examined
MAX_DEPTH = 4


class DirectoryPrompter:
    """Asks the user where a missing file lives.

    request_directory returns the chosen directory, or None when the user
    cancels. `message` explains why a previous answer was rejected.
    """

    def request_directory(self, missing_path: str, start_dir: str, message: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError


class NoPrompter(DirectoryPrompter):
    """Declines every request. Used for unattended runs."""

    def request_directory(self, missing_path, start_dir, message=None):
        return None


def find_recursive(root: str, file_name: str, cancel: Optional[threading.Event] = None, depth: int = 0) -> Optional[str]:
    """Looks for `file_name` in `root` and its subdirectories, at most MAX_DEPTH levels down.

    Args:
        root (str): Directory to search.
        file_name (str): Base name of the file to find.
        cancel (threading.Event, optional): Search returns nothing once this is set.
        depth (int): Depth of `root` below the original search root.

    Returns:
        Optional[str]: Path of the first match, or None.
    """
    if depth > MAX_DEPTH:
        return None
    if cancel is not None and cancel.is_set():
        return None
    if not root or not os.path.isdir(root):
        return None

    candidate = os.path.join(root, file_name)
    if os.path.isfile(candidate):
        return candidate

    try:
        entries = sorted(os.scandir(root), key=lambda entry: entry.name)
    except OSError:
        return None
    for entry in entries:
        if entry.is_dir():
            hit = find_recursive(entry.path, file_name, cancel, depth + 1)
            if hit:
                return hit
    return None

def sibling_dir(log_path: str, name: str) -> str:
    """Returns the WBPP output directory `name` beside the log directory.

    WBPP writes logs/, registered/, calibrated/ and master/ under one output directory.
    """
    log_dir = os.path.dirname(os.path.abspath(log_path))
    return os.path.join(os.path.dirname(log_dir), name)

def prompt_for_file(prompter: DirectoryPrompter, missing_path: str, start_dir: str,
                    logger: logging.Logger, cancel: Optional[threading.Event] = None,
                    expected_dir_name: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Asks for a directory until the missing file is found below it.

    Args:
        prompter (DirectoryPrompter): Source of directory answers.
        missing_path (str): Recorded path of the missing file.
        start_dir (str): Directory suggested to the user.
        logger (logging.Logger): Logger instance for logging messages.
        cancel (threading.Event, optional): Stops the retry loop once set.
        expected_dir_name (str, optional): Conventional directory name, a warning is logged
            when the chosen directory has a different name.

    Returns:
        Tuple[Optional[str], Optional[str]]: Path of the found file and the directory the
            user chose, or (None, None) if the user cancelled.
    """
    file_name = os.path.basename(missing_path)
    message = None
    while cancel is None or not cancel.is_set():
        chosen = prompter.request_directory(missing_path, start_dir, message)
        if not chosen:
            logger.info(f"Directory prompt for {file_name} cancelled")
            return None, None
        if expected_dir_name and os.path.basename(os.path.normpath(chosen)).lower() != expected_dir_name:
            logger.warning(f"Chosen directory {chosen} is not a '{expected_dir_name}' directory")
        found = find_recursive(chosen, file_name, cancel)
        if found:
            logger.info(f"{file_name} found at {found}")
            return found, chosen
        message = f"{file_name} was not found in {chosen} or its subdirectories."
        logger.warning(message)
        start_dir = chosen
    return None, None
