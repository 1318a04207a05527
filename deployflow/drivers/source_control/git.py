"""SourceControl driver backed by the ``git`` command line.

Fetches a single revision (branch, tag or commit) with ``--depth 1`` into
the destination and checks it out detached. A destination that already
holds a checkout of the same repository is reused, so retries only fetch
what changed.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

from deployflow.drivers._process import run_process
from deployflow.kernel.exceptions import CollaboratorError, ResourceNotFoundError
from deployflow.kernel.logging import get_logger
from deployflow.kernel.ports.source_control import Snapshot

logger = get_logger(__name__)

_NOT_FOUND = re.compile(
    r"couldn't find remote ref|not our ref|does not appear to be a git repository"
    r"|repository '.*' not found|no such remote ref|unadvertised object",
    re.IGNORECASE,
)


class GitSourceControl:
    """Fetch revisions with the git CLI.

    Parameters
    ----------
    git : str
        Path or name of the git executable (default: ``"git"``).

    Examples
    --------
    Example usage::

        scm = GitSourceControl()
        snapshot = await scm.afetch("https://github.com/acme/web.git", "v1.4.0", Path("ws/web"))
    """

    def __init__(self, git: str = "git") -> None:
        self._git = git

    async def _run(self, *args: str, cwd: Path) -> str:
        result = await run_process(self._git, *args, collaborator="git", cwd=cwd)
        if not result.ok:
            command = " ".join(args)
            raise CollaboratorError("git", f"'git {command}' failed: {result.stderr.strip()}")
        return result.stdout

    async def _origin(self, destination: Path) -> str | None:
        if not (destination / ".git").is_dir():
            return None
        result = await run_process(
            self._git, "remote", "get-url", "origin", collaborator="git", cwd=destination
        )
        return result.stdout.strip() if result.ok else None

    async def afetch(self, repository: str, revision: str, destination: Path) -> Snapshot:
        if await self._origin(destination) != repository:
            if destination.exists():
                shutil.rmtree(destination)
            destination.mkdir(parents=True)
            await self._run("init", "--quiet", cwd=destination)
            await self._run("remote", "add", "origin", repository, cwd=destination)

        fetch = await run_process(
            self._git,
            "fetch",
            "--quiet",
            "--depth",
            "1",
            "origin",
            revision,
            collaborator="git",
            cwd=destination,
        )
        if not fetch.ok:
            if _NOT_FOUND.search(fetch.stderr):
                raise ResourceNotFoundError("revision", f"{repository}@{revision}")
            reason = f"fetch of '{revision}' failed: {fetch.stderr.strip()}"
            raise CollaboratorError("git", reason)

        await self._run("checkout", "-q", "--force", "--detach", "FETCH_HEAD", cwd=destination)
        await self._run("clean", "-fdxq", cwd=destination)
        commit = (await self._run("rev-parse", "HEAD", cwd=destination)).strip()
        logger.debug(
            "Checked out {repository}@{revision} ({commit})",
            repository=repository,
            revision=revision,
            commit=commit[:12],
        )
        return Snapshot(repository=repository, revision=revision, commit=commit, path=destination)
