"""Subprocess-based runner for CLI coding agents."""

from __future__ import annotations

import codecs
import logging
import os
import subprocess
import time
from collections.abc import Callable
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import BinaryIO

from ralph_loop.backend.base import AgentRunRequest, CapturedOutput

logger = logging.getLogger(__name__)

EXIT_CODE_TIMEOUT = 124
EXIT_CODE_NOT_EXECUTABLE = 126
EXIT_CODE_NOT_FOUND = 127

_POLL_INTERVAL_SECONDS = 0.1
_READ_CHUNK_BYTES = 64 * 1024


class CliAgentRunner:
    """Run an agent command with the prompt on stdin and merged output capture."""

    def run(self, request: AgentRunRequest) -> CapturedOutput:
        env = os.environ.copy()
        env.update(request.env)
        command_head = request.argv[0]

        with TemporaryDirectory(prefix="ralph-agent-") as temp_dir:
            prompt_path = Path(temp_dir) / "prompt.md"
            output_path = Path(temp_dir) / "output.log"
            prompt_path.write_bytes(request.prompt)

            with (
                prompt_path.open("rb") as stdin_handle,
                output_path.open("wb") as output_handle,
                output_path.open("rb") as reader,
            ):
                try:
                    process = subprocess.Popen(  # noqa: S603
                        list(request.argv),
                        cwd=request.cwd,
                        env=env,
                        stdin=stdin_handle,
                        stdout=output_handle,
                        stderr=subprocess.STDOUT,
                    )
                except FileNotFoundError:
                    logger.warning("Agent executable %s is not on PATH", command_head)
                    return _spawn_failure(
                        request,
                        text=f"Agent command not found: {command_head}\n",
                        exit_code=EXIT_CODE_NOT_FOUND,
                    )
                except OSError as error:
                    logger.warning("Cannot start agent %s: %s", command_head, error)
                    return _spawn_failure(
                        request,
                        text=f"Agent command failed to start: {error}\n",
                        exit_code=EXIT_CODE_NOT_EXECUTABLE,
                    )

                collector = _OutputCollector(reader=reader, echo=request.echo)
                exit_code, timed_out = _wait_with_streaming(
                    process=process,
                    collector=collector,
                    timeout_seconds=request.timeout_seconds,
                )
                text = collector.finish()

        if timed_out:
            logger.warning(
                "Agent %s timed out after %ss and was terminated",
                command_head,
                request.timeout_seconds,
            )
            note = f"\nAgent timed out after {request.timeout_seconds}s and was terminated.\n"
            if request.echo is not None:
                request.echo(note)
            text += note
        elif exit_code != 0:
            logger.info("Agent %s exited with code %s", command_head, exit_code)
        return CapturedOutput(text=text, exit_code=exit_code, timed_out=timed_out)


def _spawn_failure(request: AgentRunRequest, *, text: str, exit_code: int) -> CapturedOutput:
    if request.echo is not None:
        request.echo(text)
    return CapturedOutput(text=text, exit_code=exit_code)


class _OutputCollector:
    """Incrementally reads the capture file, forwarding decoded text to ``echo``."""

    def __init__(self, *, reader: BinaryIO, echo: Callable[[str], None] | None) -> None:
        self._reader = reader
        self._echo = echo
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []

    def drain(self) -> None:
        while True:
            chunk = self._reader.read(_READ_CHUNK_BYTES)
            if not chunk:
                return
            self._emit(self._decoder.decode(chunk))

    def finish(self) -> str:
        self.drain()
        self._emit(self._decoder.decode(b"", final=True))
        return "".join(self._parts)

    def _emit(self, text: str) -> None:
        if not text:
            return
        self._parts.append(text)
        if self._echo is not None:
            self._echo(text)


def _wait_with_streaming(
    *,
    process: subprocess.Popen[bytes],
    collector: _OutputCollector,
    timeout_seconds: int | None,
) -> tuple[int, bool]:
    start_monotonic = time.monotonic()
    try:
        while True:
            collector.drain()
            returncode = process.poll()
            if returncode is not None:
                return returncode, False

            if (
                timeout_seconds is not None
                and time.monotonic() - start_monotonic >= timeout_seconds
            ):
                _terminate_process(process)
                return EXIT_CODE_TIMEOUT, True

            time.sleep(_POLL_INTERVAL_SECONDS)
    except KeyboardInterrupt:
        _terminate_process(process)
        raise


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
