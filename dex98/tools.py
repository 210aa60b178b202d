"""
External tool discovery and background task handling.
"""

import shutil
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Callable, List, Optional

from packaging.version import InvalidVersion, Version

from .config import PipelineConfig
from .errors import EnvironmentCheckError


# --zi needs oxipng 9.1.3 or newer
OXIPNG_MIN_VERSION = Version('9.1.3')


def run_tool(cmd: List[str], timeout: int = 300) -> subprocess.CompletedProcess:
    """Run an external command, raising CalledProcessError on failure."""
    return subprocess.run(cmd, check=True, capture_output=True, text=True, timeout=timeout)


def tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def tool_version(name: str) -> Optional[Version]:
    """
    Return the version an executable reports, e.g. `oxipng 9.1.3` -> 9.1.3.

    Returns None if the tool is missing or prints no parseable version.
    """
    if not tool_available(name):
        return None
    try:
        result = run_tool([name, '--version'], timeout=30)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
        return None
    lines = result.stdout.strip().splitlines()
    if not lines:
        return None
    try:
        return Version(lines[0].split()[-1].lstrip('v'))
    except InvalidVersion:
        return None


def check_environment(config: PipelineConfig):
    """
    Verify support files and tools before any photo is processed.

    Raises:
        EnvironmentCheckError: If anything required is missing or too old
    """
    config.validate()

    if config.use_oxipng:
        if not tool_available('oxipng'):
            raise EnvironmentCheckError("'oxipng' is not installed or not in your PATH.")
        version = tool_version('oxipng')
        if version is None or version < OXIPNG_MIN_VERSION:
            raise EnvironmentCheckError(
                f"Oxipng v{version}; upgrade to at least v{OXIPNG_MIN_VERSION}.")


class TaskQueue:
    """
    Fire-and-forget queue for optional background work.

    Submitted callables run on one worker thread. Nothing in the pipeline
    waits on them. With `synchronous=True` work runs inline on submit so
    results are deterministic, which tests rely on.
    """

    def __init__(self, synchronous: bool = False, enabled: bool = True):
        self.synchronous = synchronous
        self.enabled = enabled
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future] = []

    def submit(self, fn: Callable, *args) -> Optional[Future]:
        """Queue a callable; returns its Future, or None when disabled."""
        if not self.enabled:
            return None
        if self.synchronous:
            future = Future()
            try:
                future.set_result(fn(*args))
            except Exception as e:
                print(f"Warning: Background task failed: {e}")
                future.set_exception(e)
            return future
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='dex98-bg')
        future = self._executor.submit(fn, *args)
        future.add_done_callback(self._report)
        self._futures.append(future)
        return future

    @staticmethod
    def _report(future: Future):
        if not future.cancelled() and future.exception() is not None:
            print(f"Warning: Background task failed: {future.exception()}")

    def pending(self) -> int:
        return sum(1 for f in self._futures if not f.done())

    def wait(self, timeout: Optional[float] = None):
        """Block until submitted work has finished or `timeout` expires."""
        wait_futures(self._futures, timeout=timeout)

    def shutdown(self, cancel_pending: bool = False):
        """Release the worker without waiting for running work."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=cancel_pending)
            self._executor = None
