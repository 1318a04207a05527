"""Subprocess helper shared by CLI-backed drivers."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING

from deployflow.kernel.exceptions import CollaboratorError

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(slots=True, frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_process(
    *args: str,
    collaborator: str,
    cwd: Path | None = None,
    stdin: str | None = None,
) -> ProcessResult:
    """Run ``args`` without a shell and capture its output.

    The child is killed and reaped if the awaiting task is cancelled.

    Raises
    ------
    CollaboratorError
        If the executable cannot be started.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CollaboratorError(collaborator, f"cannot execute '{args[0]}': {e}") from e

    try:
        stdout, stderr = await proc.communicate(stdin.encode() if stdin is not None else None)
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    return ProcessResult(
        returncode=proc.returncode or 0,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
