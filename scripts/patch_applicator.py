#!/usr/bin/env python3
"""
Patch Applicator for Ryn

Applies a generated fix to a file inside a git work tree and commits it.

Preconditions (checked before anything is written):
    - the file exists inside the repository
    - ``git status --porcelain`` reports a clean tree
    - ``original_code`` still appears verbatim in the file

On any failure the file is restored, the index is reset and
``PatchApplyError`` carries the reason.

Usage:
    applicator = PatchApplicator("/path/to/repo")
    sha = applicator.apply_patch("app/views.py", fix.original_code, fix.fixed_code)
    applied = applicator.apply(fix, "app/views.py", line_number=violation.line_number)
"""

import logging
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Union

from exceptions import PatchApplyError
from hybrid.models import Fix, utc_now

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30
FALLBACK_IDENTITY = ("Ryn", "ryn@localhost")


class PatchApplicator:
    """Apply fixes as single-file git commits.

    Parameters
    ----------
    repo_root : str | Path
        Root of the git work tree the fixes belong to.
    """

    def __init__(self, repo_root: Union[str, Path]):
        self.repo_root = Path(repo_root).resolve()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply_patch(
        self,
        file_path: Union[str, Path],
        original_code: str,
        fixed_code: str,
        message: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> str:
        """Replace ``original_code`` with ``fixed_code`` and commit.

        ``line_number`` disambiguates when ``original_code`` occurs more than
        once: the occurrence starting nearest to it is replaced.

        Returns
        -------
        str
            The new commit sha.

        Raises
        ------
        PatchApplyError
            If a precondition fails or git cannot record the commit.
        """
        path = self._resolve(file_path)
        relative = path.relative_to(self.repo_root).as_posix()

        if not original_code:
            raise PatchApplyError(relative, "original code is empty")
        if original_code == fixed_code:
            raise PatchApplyError(relative, "fixed code is identical to the original")

        self._git_or_fail(relative, ["rev-parse", "--is-inside-work-tree"])
        status = self._git_or_fail(relative, ["status", "--porcelain"])
        if status.strip():
            raise PatchApplyError(relative, "working tree has uncommitted changes")

        with open(path, "r", encoding="utf-8", newline="") as f:
            content = f.read()
        if original_code not in content and "\r\n" in content:
            original_code = original_code.replace("\n", "\r\n")
            fixed_code = fixed_code.replace("\n", "\r\n")

        offset = self._locate(relative, content, original_code, line_number)
        patched = content[:offset] + fixed_code + content[offset + len(original_code):]

        self._write(path, patched)
        try:
            self._git(["add", "--", relative])
            self._git(self._identity_args() + ["commit", "-q", "-m", message or f"Apply Ryn fix to {relative}"])
            sha = self._git(["rev-parse", "HEAD"]).strip()
        except RuntimeError as e:
            logger.error("Commit of fix for %s failed, restoring file: %s", relative, e)
            self._restore(path, relative, content)
            raise PatchApplyError(relative, str(e)) from e

        logger.info("Applied fix to %s in commit %s", relative, sha[:12])
        return sha

    def apply(
        self,
        fix: Fix,
        file_path: Union[str, Path],
        line_number: Optional[int] = None,
        applied_by: str = "ryn",
    ) -> Fix:
        """Apply a ``Fix`` and return a copy stamped with the commit."""
        sha = self.apply_patch(
            file_path,
            fix.original_code,
            fix.fixed_code,
            message=f"Fix {fix.violation_id}: {self._first_line(fix.explanation)}",
            line_number=line_number,
        )
        return replace(fix, applied_at=utc_now(), applied_by=applied_by, git_commit_sha=sha)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, file_path: Union[str, Path]) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = self.repo_root / path
        path = path.resolve()
        try:
            path.relative_to(self.repo_root)
        except ValueError:
            raise PatchApplyError(str(file_path), "file is outside the repository")
        if not path.is_file():
            raise PatchApplyError(str(file_path), "file does not exist")
        return path

    @staticmethod
    def _locate(relative: str, content: str, original_code: str, line_number: Optional[int]) -> int:
        offsets: List[int] = []
        start = content.find(original_code)
        while start != -1:
            offsets.append(start)
            start = content.find(original_code, start + 1)

        if not offsets:
            raise PatchApplyError(relative, "original code no longer matches the file")
        if len(offsets) == 1:
            return offsets[0]
        if line_number is None:
            raise PatchApplyError(
                relative, f"original code appears {len(offsets)} times; a line number is required"
            )
        return min(offsets, key=lambda o: abs(content.count("\n", 0, o) + 1 - line_number))

    @staticmethod
    def _write(path: Path, content: str) -> None:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def _restore(self, path: Path, relative: str, content: str) -> None:
        self._write(path, content)
        try:
            self._git(["reset", "-q", "--", relative])
        except RuntimeError as e:
            logger.warning("Could not unstage %s after failed apply: %s", relative, e)

    def _identity_args(self) -> List[str]:
        try:
            self._git(["config", "user.email"])
            return []
        except RuntimeError:
            name, email = FALLBACK_IDENTITY
            return ["-c", f"user.name={name}", "-c", f"user.email={email}"]

    @staticmethod
    def _first_line(text: str) -> str:
        return (text or "").strip().splitlines()[0][:72] if (text or "").strip() else "generated fix"

    def _git_or_fail(self, relative: str, args: List[str]) -> str:
        try:
            return self._git(args)
        except RuntimeError as e:
            raise PatchApplyError(relative, str(e)) from e

    def _git(self, args: List[str]) -> str:
        """Run a git command in the repository and return stdout.

        Raises
        ------
        RuntimeError
            If git is not installed or the command exits with non-zero status.
        """
        cmd = ["git"] + args
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except FileNotFoundError:
            raise RuntimeError("git is not installed or not found in PATH")
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"git command timed out: {' '.join(cmd)}")

        if result.returncode != 0:
            raise RuntimeError(
                f"git command failed (exit {result.returncode}): {' '.join(cmd)}\n{result.stderr.strip()}"
            )
        return result.stdout


__all__ = ["PatchApplicator"]
