"""In-memory session provider for testing."""

from __future__ import annotations

import shlex
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Union

from ..contracts import SessionDescriptor
from .base import CommandResult, Session, SessionFactory


class InMemorySession(Session):
    """A fake checkout holding files in a dict.

    Understands the handful of ``git`` invocations the pipeline issues so
    that staging, committing and pushing can be asserted on.
    """

    def __init__(self, factory: "InMemorySessionFactory", files: Dict[str, str]) -> None:
        self._factory = factory
        self.files = dict(files)
        self.changed: List[str] = []
        self.staged: List[str] = []
        self.closed = False

    async def run(self, command: str, *args: str) -> CommandResult:
        line = shlex.join([command, *args])
        self._factory.commands.append(line)
        failure = self._factory._pop_command_failure(line)
        if failure is not None:
            raise failure

        for prefix, response in self._factory.responses.items():
            if line.startswith(prefix):
                if isinstance(response, CommandResult):
                    return response
                return CommandResult(command=line, stdout=response)

        stdout = ""
        if command == "ls":
            stdout = "\n".join(sorted({path.split("/")[0] for path in self.files}))
        elif command == "git" and args:
            sub = args[0]
            if sub == "remote":
                remote = self._factory.remote
                stdout = f"origin\t{remote} (fetch)\norigin\t{remote} (push)\n"
            elif sub == "add":
                self.staged = sorted(set(self.staged) | set(self.changed))
            elif sub == "diff" and "--cached" in args:
                stdout = "\n".join(self.staged)
            elif sub == "commit":
                self._factory.commits.append(list(self.staged))
            elif sub == "push":
                self._factory.pushed_branches.append(args[-1])
        return CommandResult(command=line, stdout=stdout)

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content
        if path not in self.changed:
            self.changed.append(path)

    async def close(self) -> None:
        self.closed = True


class InMemorySessionFactory(SessionFactory):
    """Hands out fresh in-memory checkouts; records every interaction."""

    def __init__(
        self,
        files: Optional[Dict[str, str]] = None,
        responses: Optional[Dict[str, Union[str, CommandResult]]] = None,
        remote: str = "https://github.com/acme/widgets.git",
    ) -> None:
        self.files = dict(files or {"README.md": "# widgets\n", "app/page.tsx": ""})
        self.responses = dict(responses or {})
        self.remote = remote
        self.sessions: List[InMemorySession] = []
        self.descriptors: List[SessionDescriptor] = []
        self.commands: List[str] = []
        self.commits: List[List[str]] = []
        self.pushed_branches: List[str] = []
        self._open_failures: Deque[BaseException] = deque()
        self._command_failures: Dict[str, Deque[BaseException]] = defaultdict(deque)

    def fail_next_open(self, *failures: BaseException) -> None:
        """Make the next ``len(failures)`` calls to ``open`` raise in order."""
        self._open_failures.extend(failures)

    def fail_command(self, prefix: str, *failures: BaseException) -> None:
        """Make commands starting with ``prefix`` raise, once per failure."""
        self._command_failures[prefix].extend(failures)

    def _pop_command_failure(self, line: str) -> Optional[BaseException]:
        for prefix, failures in self._command_failures.items():
            if failures and line.startswith(prefix):
                return failures.popleft()
        return None

    @property
    def open_sessions(self) -> List[InMemorySession]:
        return [session for session in self.sessions if not session.closed]

    async def open(self, descriptor: SessionDescriptor) -> Session:
        self.descriptors.append(descriptor)
        if self._open_failures:
            raise self._open_failures.popleft()
        session = InMemorySession(self, self.files)
        self.sessions.append(session)
        return session
