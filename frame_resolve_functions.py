import logging
import os
import queue
import threading
from typing import Callable, List, Optional, Sequence

from models import AcquisitionGroup, LocationCache, ResolutionContext
from search_functions import DirectoryPrompter, find_recursive, prompt_for_file, sibling_dir
from xisf_functions import read_frame_header

#
# Date: Saturday 17th October 2026
# Modification : v2.0.0 Locates moved light frames and reads their headers.
# 1. Exact directory cache, recursive root cache, registered sibling probe, then a prompt.
# 2. Resolution runs on a worker thread, prompts are answered on the calling thread.
# Author : SDG
#
# Date: Sunday 18th October 2026
# Modification : v2.0.1 Frames already resolved are left untouched on a second pass.
# Author : SDG
#

REGISTERED_DIR = 'registered'

ProgressCallback = Callable[[int, int], None]

def probe_registered_sibling(log_path: str, file_name: str, cancel: Optional[threading.Event] = None) -> Optional[str]:
    """Searches the WBPP 'registered' directory that sits beside the log directory."""
    registered = sibling_dir(log_path, REGISTERED_DIR)
    if not os.path.isdir(registered):
        return None
    return find_recursive(registered, file_name, cancel)

def locate_in_cache(file_name: str, cache: LocationCache, cancel: Optional[threading.Event] = None) -> Optional[str]:
    """Checks the exact directories first, then searches each root recursively."""
    for directory in sorted(cache.primary):
        candidate = os.path.join(directory, file_name)
        if os.path.isfile(candidate):
            return candidate
    for root in cache.secondary:
        if cancel is not None and cancel.is_set():
            return None
        found = find_recursive(root, file_name, cancel)
        if found:
            return found
    return None

def remap_group(group: AcquisitionGroup, known_dir: str, cache: LocationCache,
                cancel: Optional[threading.Event] = None) -> int:
    """Rewrites the missing frame paths of a group to where they now live.

    Frames of one integration block are nearly always stored together, so the
    directory that held one frame is tried for every other missing frame
    before the caches are searched.

    Returns:
        int: Number of paths rewritten.
    """
    remapped = 0
    for index, path in enumerate(group.frame_paths):
        if group.frame_resolved[index] or os.path.isfile(path):
            continue
        file_name = os.path.basename(path)
        candidate = os.path.join(known_dir, file_name)
        if not os.path.isfile(candidate):
            candidate = locate_in_cache(file_name, cache, cancel)
        if candidate:
            group.frame_paths[index] = candidate
            remapped += 1
    return remapped


class FrameResolver:
    """Finds the light frames named in acquisition groups and reads their headers.

    Each missing frame is looked for in the exact directory cache, then under
    the recursive search roots, then once per group in the 'registered'
    directory beside the log, and finally by asking the prompter. Cancelling
    a prompt skips the rest of that group. Frames already resolved are not
    touched again.
    """

    def __init__(self, context: ResolutionContext, prompter: DirectoryPrompter, logger: logging.Logger,
                 progress: Optional[ProgressCallback] = None):
        if not isinstance(logger, logging.Logger):
            raise ValueError("logger must be a logging.Logger instance")
        self.context = context
        self.prompter = prompter
        self.logger = logger
        self.progress = progress
        self.done = 0
        self.total = 0

    def report(self) -> None:
        self.done += 1
        if self.progress:
            self.progress(self.done, self.total)

    def resolve(self, groups: Sequence[AcquisitionGroup]) -> int:
        """Resolves every frame of every group.

        Returns:
            int: Number of frames resolved by this call.
        """
        self.done = 0
        self.total = sum(group.frame_count for group in groups)
        resolved = 0
        for group in groups:
            resolved += self.resolve_group(group)
        self.logger.info(f"Frame resolution finished: {resolved} frames resolved, "
                         f"{'cancelled' if self.context.cancel.is_set() else 'complete'}")
        return resolved

    def resolve_group(self, group: AcquisitionGroup) -> int:
        cancel = self.context.cancel
        cache = self.context.frames
        probed = False
        skipped = False
        resolved = 0

        for index in range(group.frame_count):
            if cancel.is_set() or skipped or group.frame_resolved[index]:
                self.report()
                continue

            path = group.frame_paths[index]
            if not os.path.isfile(path):
                file_name = os.path.basename(path)
                found = locate_in_cache(file_name, cache, cancel)
                if not found and not probed and not cancel.is_set():
                    probed = True
                    found = probe_registered_sibling(group.source_log_file, file_name, cancel)
                    if found:
                        self.logger.info(f"Found {file_name} in the registered directory beside the log")
                        cache.remember(os.path.dirname(found), searchable=True)
                if not found and not cancel.is_set():
                    found = self.ask(group, path)
                    if not found:
                        self.logger.warning(f"Skipping remaining frames of {group.target or group.source_log_file} "
                                            f"/ {group.filter}")
                        skipped = True
                        self.report()
                        continue
                if found:
                    known_dir = os.path.dirname(found)
                    cache.remember(known_dir)
                    group.frame_paths[index] = found
                    remapped = remap_group(group, known_dir, cache, cancel)
                    self.logger.debug(f"Remapped {remapped} frame paths to {known_dir}")
                    path = found

            header = read_frame_header(path, self.logger) if os.path.isfile(path) else None
            if header is None:
                self.logger.warning(f"Frame not resolved: {path}")
            else:
                group.apply_header(index, header)
                resolved += 1
            self.report()

        return resolved

    def ask(self, group: AcquisitionGroup, path: str) -> Optional[str]:
        registered = sibling_dir(group.source_log_file, REGISTERED_DIR)
        start_dir = registered if os.path.isdir(registered) else os.path.dirname(os.path.abspath(group.source_log_file))
        found, root = prompt_for_file(self.prompter, path, start_dir, self.logger, self.context.cancel,
                                      expected_dir_name=REGISTERED_DIR)
        if found:
            # The chosen root may hold other groups' frames too
            self.context.frames.remember(root, searchable=True)
        return found


class PromptRequest:
    """A directory request waiting for an answer from the controlling thread."""

    def __init__(self, missing_path: str, start_dir: str, message: Optional[str]):
        self.missing_path = missing_path
        self.start_dir = start_dir
        self.message = message
        self.answer: Optional[str] = None
        self.answered = threading.Event()

    def reply(self, directory: Optional[str]) -> None:
        self.answer = directory
        self.answered.set()


class QueuedPrompter(DirectoryPrompter):
    """Worker side prompter: posts requests to the event queue and blocks for the reply."""

    def __init__(self, events: queue.Queue):
        self.events = events

    def request_directory(self, missing_path, start_dir, message=None):
        request = PromptRequest(missing_path, start_dir, message)
        self.events.put(('prompt', request))
        request.answered.wait()
        return request.answer


class FrameResolveWorker(threading.Thread):
    """Runs a FrameResolver off the controlling thread.

    Progress, prompt requests and completion are posted to `events` as
    ('progress', (done, total)), ('prompt', PromptRequest) and
    ('finished', resolved_count or error string).
    """

    def __init__(self, groups: Sequence[AcquisitionGroup], context: ResolutionContext, logger: logging.Logger):
        super().__init__(name='frame-resolver', daemon=True)
        self.groups = groups
        self.context = context
        self.logger = logger
        self.events: queue.Queue = queue.Queue()

    def run(self) -> None:
        resolver = FrameResolver(self.context, QueuedPrompter(self.events), self.logger,
                                 progress=lambda done, total: self.events.put(('progress', (done, total))))
        try:
            result = resolver.resolve(self.groups)
        except Exception as e:
            self.logger.error(f"Frame resolution failed: {str(e)}")
            result = f"Frame resolution failed: {str(e)}"
        self.events.put(('finished', result))

def run_frame_resolution(groups: List[AcquisitionGroup], context: ResolutionContext, prompter: DirectoryPrompter,
                         logger: logging.Logger, progress: Optional[ProgressCallback] = None) -> int:
    """Resolves frames on a worker thread while answering its prompts on this thread.

    A KeyboardInterrupt while waiting sets the cancellation flag, the worker
    then finishes the remaining frames without I/O.

    Returns:
        int: Number of frames resolved.

    Raises:
        RuntimeError: If the worker failed.
    """
    worker = FrameResolveWorker(groups, context, logger)
    worker.start()
    result = 0
    while True:
        try:
            kind, payload = worker.events.get()
        except KeyboardInterrupt:
            logger.warning("Frame resolution cancelled by user")
            context.cancel.set()
            continue
        if kind == 'progress':
            if progress:
                progress(*payload)
        elif kind == 'prompt':
            try:
                answer = prompter.request_directory(payload.missing_path, payload.start_dir, payload.message)
            except KeyboardInterrupt:
                context.cancel.set()
                answer = None
            payload.reply(answer)
        elif kind == 'finished':
            result = payload
            break
    worker.join()
    if isinstance(result, str):
        raise RuntimeError(result)
    return result
