"""Sessions backed by a local ``git`` checkout in a temporary directory."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from ..contracts import SessionDescriptor, parse_repo_locator
from ..errors import ConfigError, NetworkTimeout, PathEscapeError, TransientServiceError
from .base import CommandResult, Session, SessionFactory

logger = logging.getLogger(__name__)


class LocalGitSession(Session):
    """Run commands against a cloned working copy on the local filesystem."""

    def __init__(
        self, root: Path, command_timeout: float = 300.0, secret: Optional[str] = None
    ) -> None:
        self.root = root
        self.command_timeout = command_timeout
        self._secret = secret

    def _redact(self, text: str) -> str:
        if self._secret:
            return text.replace(self._secret, "***")
        return text

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if resolved != self.root.resolve() and self.root.resolve() not in resolved.parents:
            raise PathEscapeError(f"Path escapes the session checkout: {path}")
        return resolved

    async def run(self, command: str, *args: str) -> CommandResult:
        display = self._redact(shlex.join([command, *args]))
        logger.debug(f"Running '{display}' in {self.root}")
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=str(self.root),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ConfigError(f"Command not available in session: {command}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise NetworkTimeout(
                f"Command '{display}' timed out after {self.command_timeout}s"
            ) from exc

        return CommandResult(
            command=display,
            exit_code=proc.returncode or 0,
            stdout=self._redact(stdout.decode("utf-8", errors="replace")),
            stderr=self._redact(stderr.decode("utf-8", errors="replace")),
        )

    async def list_files(self, path: str | None = None) -> str:
        target = self._resolve(path or ".")
        relative = target.relative_to(self.root.resolve())
        result = await self.check("ls", "-la", str(relative))
        return result.stdout

    async def read_file(self, path: str) -> str:
        target = self._resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def write_file(self, path: str, content: str) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)

    async def close(self) -> None:
        await asyncio.to_thread(shutil.rmtree, self.root, True)
        logger.debug(f"Removed session checkout {self.root}")


class LocalGitSessionFactory(SessionFactory):
    """Clone the repository into a fresh temporary directory per ``open``."""

    def __init__(
        self,
        workdir: Optional[str] = None,
        command_timeout: float = 300.0,
        git_user_name: str = "AI Coding Agent",
        git_user_email: str = "ai-agent@example.com",
    ) -> None:
        self.workdir = workdir
        self.command_timeout = command_timeout
        self.git_user_name = git_user_name
        self.git_user_email = git_user_email

    async def open(self, descriptor: SessionDescriptor) -> Session:
        locator = parse_repo_locator(descriptor.repo_locator)
        secret = descriptor.credential.get_secret_value() or None
        root = Path(tempfile.mkdtemp(prefix="repoflow-", dir=self.workdir))
        session = LocalGitSession(root, self.command_timeout, secret=secret)

        logger.info(f"Cloning {locator.url} into {root}")
        try:
            clone = await session.run(
                "git", "clone", locator.clone_url(descriptor.credential), "."
            )
            if not clone.ok:
                raise TransientServiceError(
                    f"Failed to clone {locator.url} (exit {clone.exit_code}): {clone.stderr.strip()}"
                )
            await session.check("git", "config", "user.name", self.git_user_name)
            await session.check("git", "config", "user.email", self.git_user_email)
        except BaseException:
            await session.close()
            raise
        return session
