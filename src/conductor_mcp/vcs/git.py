"""Git implementation of the version-control capability."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ..errors import BackendUnavailableError, NotFoundError
from .base import CommitRecord, RevertOutcome
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

_RECORD_SEP = "\x1e"
_FIELD_SEP = "\x1f"
_LOG_FORMAT = f"--format={_RECORD_SEP}%H{_FIELD_SEP}%cI"


@dataclass(slots=True)
class GitCommandResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitBackend:
    """Run git commands synchronously against one repository.

    Calls are never parallelised: each revert depends on the previous one
    having landed, so every method blocks until git exits.
    """

    def __init__(self, repo_path: Path, executable: Path | str | None = None) -> None:
        self._repo_path = Path(repo_path)
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | str | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise BackendUnavailableError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise BackendUnavailableError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    def version(self) -> str:
        return self._checked("--version").stdout.strip()

    def current_head(self) -> str:
        return self._checked("rev-parse", "HEAD").stdout.strip()

    def log(self, since: str | None = None) -> list[CommitRecord]:
        revision = "HEAD"
        if since is not None:
            if not self._invoke("rev-parse", "--verify", "--quiet", f"{since}^{{commit}}").ok:
                raise NotFoundError("commit", since)
            # A root commit has no parent, so the whole history is the range.
            if self._invoke("rev-parse", "--verify", "--quiet", f"{since}^").ok:
                revision = f"{since}^..HEAD"
        # -m lists merge files once per parent, first parent first; parse_log keeps that one.
        result = self._checked(
            "log", "--reverse", "--no-renames", "-m", "--name-only", _LOG_FORMAT, revision
        )
        return parse_log(result.stdout)

    def revert_commit(self, commit_id: str) -> RevertOutcome:
        self.ensure_clean()
        args = ["revert", "--no-edit"]
        if self.is_merge(commit_id):
            args += ["-m", "1"]
        result = self._invoke(*args, commit_id)
        if result.ok:
            head = self.current_head()
            logger.debug("Reverted commit", extra={"commit_id": commit_id, "revert_commit": head})
            return RevertOutcome(commit_id=commit_id, ok=True, revert_commit=head)

        conflict_files = self._unmerged_files()
        in_progress = self._invoke("rev-parse", "--verify", "--quiet", "REVERT_HEAD").ok
        if not conflict_files and not in_progress:
            raise BackendUnavailableError(
                f"git revert {commit_id} failed",
                command=list(result.args),
                stderr=result.stderr.strip(),
            )

        self._invoke("revert", "--abort")
        logger.warning(
            "Revert conflict; aborted",
            extra={"commit_id": commit_id, "conflict_files": conflict_files},
        )
        return RevertOutcome(
            commit_id=commit_id,
            ok=False,
            conflict_files=conflict_files,
            message=(result.stderr.strip() or result.stdout.strip())[:400],
        )

    def is_merge(self, commit_id: str) -> bool:
        return self._invoke("rev-parse", "--verify", "--quiet", f"{commit_id}^2").ok

    def ensure_clean(self) -> None:
        status = self._checked("status", "--porcelain", "--untracked-files=no").stdout
        if status.strip():
            raise BackendUnavailableError(
                "Working tree has uncommitted changes; commit or stash them before reverting",
                stderr=status.strip()[:400],
            )

    def _unmerged_files(self) -> list[str]:
        result = self._invoke("diff", "--name-only", "--diff-filter=U")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def _checked(self, *args: str) -> GitCommandResult:
        result = self._invoke(*args)
        if not result.ok:
            raise BackendUnavailableError(
                f"git {args[0]} failed with exit code {result.returncode}",
                command=list(result.args),
                stderr=result.stderr.strip(),
            )
        return result

    def _invoke(self, *args: str) -> GitCommandResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = subprocess.run(
                cmd,
                cwd=self._repo_path,
                capture_output=True,
                text=True,
                check=False,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise BackendUnavailableError(f"Unable to run git: {exc}", command=cmd) from exc
        return GitCommandResult(
            args=tuple(cmd),
            returncode=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
        )


def parse_log(output: str) -> list[CommitRecord]:
    """Parse ``git log --name-only`` output produced with the record separators."""

    records: list[CommitRecord] = []
    for chunk in output.split(_RECORD_SEP):
        lines = [line for line in chunk.splitlines() if line.strip()]
        if not lines:
            continue
        commit_id, _, stamp = lines[0].partition(_FIELD_SEP)
        commit_id = commit_id.strip()
        files = tuple(line.strip() for line in lines[1:])
        if records and records[-1].id == commit_id:
            # Later diffs of a merge are against other parents; keep the first-parent one.
            continue
        records.append(
            CommitRecord(
                id=commit_id,
                timestamp=datetime.fromisoformat(stamp.strip()),
                changed_files=files,
            )
        )
    return records


__all__ = ["GitBackend", "GitCommandResult", "parse_log"]
