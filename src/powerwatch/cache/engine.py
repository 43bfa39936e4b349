"""
Assessment engine boundary for PowerWatch.

The assessment engine is the external routine that queries the Power
Platform admin interfaces and returns the nested result record. The
gateway does not care how the record is produced; it only needs a JSON
object within a bounded time.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Callable

from powerwatch.config import EngineConfig, EngineType
from powerwatch.observability import get_logger

logger = get_logger(__name__)

# A record starts in the first column; nested objects are indented
_RECORD_START = re.compile(r"^\{", re.MULTILINE)


class AssessmentEngineError(Exception):
    """Raised when the assessment engine fails or returns unusable output."""

    pass


class AssessmentTimeoutError(AssessmentEngineError):
    """Raised when the assessment engine does not finish in time."""

    pass


def extract_json_object(output: str) -> dict[str, Any]:
    """
    Extract the result record from engine stdout.

    Scripts often print progress banners before the result, so the record
    is the JSON object that starts at the beginning of a line and runs to
    the end of the output. Indented objects are nested values of a larger
    document and are never taken on their own.

    Raises:
        AssessmentEngineError: If no complete JSON object ends the output
    """
    text = output.strip()
    if not text:
        raise AssessmentEngineError("Assessment engine produced no output")

    starts = [m.start() for m in _RECORD_START.finditer(text)]
    if not starts:
        raise AssessmentEngineError("Assessment engine output contained no JSON object")

    decoder = json.JSONDecoder()
    for start in starts:
        try:
            value, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        if end == len(text) and isinstance(value, dict):
            return value

    raise AssessmentEngineError(
        "Assessment engine output did not end with a complete JSON object"
    )


class AssessmentEngine(ABC):
    """Base class for assessment engines."""

    @abstractmethod
    def run(
        self,
        environment_filter: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Produce an assessment result record.

        Args:
            environment_filter: Restrict the assessment to one environment
            timeout: Upper bound in seconds for the run

        Returns:
            The engine's JSON result record

        Raises:
            AssessmentEngineError: If the run fails
            AssessmentTimeoutError: If the run exceeds the timeout
        """
        pass


class CommandAssessmentEngine(AssessmentEngine):
    """
    Runs an external program, usually a PowerShell script, and parses the
    JSON it prints on stdout.

    Example command::

        ["pwsh", "-NoProfile", "-File", "Invoke-PowerWatchAssessment.ps1", "-AsJson"]
    """

    def __init__(
        self,
        command: list[str],
        environment_filter_arg: str = "-EnvironmentName",
        working_dir: str | None = None,
        env: dict[str, str] | None = None,
    ):
        if not command:
            raise ValueError("Assessment command must not be empty")
        self.command = list(command)
        self.environment_filter_arg = environment_filter_arg
        self.working_dir = working_dir or None
        self.env = env

    def build_command(self, environment_filter: str | None = None) -> list[str]:
        """Build the argv for one run."""
        argv = list(self.command)
        if environment_filter:
            if self.environment_filter_arg:
                argv.append(self.environment_filter_arg)
            argv.append(environment_filter)
        return argv

    def run(
        self,
        environment_filter: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        argv = self.build_command(environment_filter)
        logger.debug("Running assessment engine", command=argv[0], timeout=timeout)

        env = None
        if self.env:
            env = {**os.environ, **self.env}

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=self.working_dir,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise AssessmentTimeoutError(
                f"Assessment engine timed out after {timeout} seconds"
            ) from e
        except OSError as e:
            raise AssessmentEngineError(f"Cannot start assessment engine: {e}") from e

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else "no error output"
            raise AssessmentEngineError(
                f"Assessment engine exited with code {completed.returncode}: {detail}"
            )

        return extract_json_object(completed.stdout)


class FileAssessmentEngine(AssessmentEngine):
    """
    Loads a result record exported by a previous assessment run.

    The environment filter is ignored; the file is served as exported.
    """

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def run(
        self,
        environment_filter: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        try:
            # PowerShell writes UTF-8 with a byte order mark
            with open(self.path, "r", encoding="utf-8-sig") as f:
                return extract_json_object(f.read())
        except OSError as e:
            raise AssessmentEngineError(f"Cannot read assessment file {self.path}: {e}") from e


class CallableAssessmentEngine(AssessmentEngine):
    """Wraps a Python callable taking the environment filter."""

    def __init__(self, func: Callable[[str | None], dict[str, Any]]):
        self.func = func

    def run(
        self,
        environment_filter: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        result = self.func(environment_filter)
        if not isinstance(result, dict):
            raise AssessmentEngineError("Assessment callable must return a dict")
        return result


def create_engine(config: EngineConfig) -> AssessmentEngine:
    """
    Create an assessment engine from configuration.

    Raises:
        ValueError: If the configuration does not describe a usable engine
    """
    if config.type == EngineType.FILE:
        if not config.path:
            raise ValueError("File engine requires a path")
        return FileAssessmentEngine(config.path)

    return CommandAssessmentEngine(
        command=config.command,
        environment_filter_arg=config.environment_filter_arg,
        working_dir=config.working_dir or None,
    )
