"""Session provider interface consumed by pipeline steps."""

from __future__ import annotations

import abc
import shlex
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from ..contracts import SessionDescriptor
from ..errors import CommandError


@dataclass
class CommandResult:
    """Outcome of a command run inside a session."""

    command: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Session(metaclass=abc.ABCMeta):
    """Ephemeral handle on one repository checkout.

    A session never outlives the step that opened it and is never passed
    across a step boundary.
    """

    @abc.abstractmethod
    async def run(self, command: str, *args: str) -> CommandResult:
        """Run ``command`` with ``args`` in the checkout."""
        raise NotImplementedError

    async def check(self, command: str, *args: str) -> CommandResult:
        """Run a command and raise ``CommandError`` on a non-zero exit."""
        result = await self.run(command, *args)
        if not result.ok:
            raise CommandError(shlex.join([command, *args]), result.exit_code, result.stderr)
        return result

    @abc.abstractmethod
    async def read_file(self, path: str) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        raise NotImplementedError

    async def list_files(self, path: str | None = None) -> str:
        target = path or "."
        result = await self.check("ls", "-la", target)
        return result.stdout

    async def close(self) -> None:
        """Release the session (no-op by default)."""
        pass


class SessionFactory(metaclass=abc.ABCMeta):
    """Creates fresh sessions from serializable descriptors. Never caches."""

    @abc.abstractmethod
    async def open(self, descriptor: SessionDescriptor) -> Session:
        """Open a new session bound to a fresh checkout of the repository."""
        raise NotImplementedError

    @asynccontextmanager
    async def session(self, descriptor: SessionDescriptor) -> AsyncIterator[Session]:
        """Open a session that is closed when the block exits, whatever happens."""
        session = await self.open(descriptor)
        try:
            yield session
        finally:
            await session.close()
