"""The fixed pipeline of steps that modify a repository.

Every step receives a plain input model and returns a plain output model.
A step that needs live access to the repository opens its own session from
the descriptor it was given and closes it before returning; sessions never
cross a step boundary, which is what lets the engine checkpoint outputs
and replay or retry any step on its own.
"""

from __future__ import annotations

import abc
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel

from .agents import CodeAgent
from .classifier import ErrorClassifier, Verdict
from .constants import (
    ACTIVITY_FILE,
    ANALYZE_REPOSITORY,
    BRANCH_PREFIX,
    CREATE_PULL_REQUEST,
    EXCLUDED_PATHSPECS,
    EXECUTE_CHANGES,
    INITIALIZE_SANDBOX,
    NOTIFY_USER,
)
from .contracts import (
    AnalyzeInput,
    AnalyzeOutput,
    ChangeSummary,
    ExecuteInput,
    ExecuteOutput,
    InitializeInput,
    InitializeOutput,
    NotifyInput,
    NotifyOutput,
    PublishInput,
    PublishOutput,
    RepositoryAnalysis,
    RunDescriptor,
    SessionDescriptor,
    parse_repo_locator,
    utcnow,
)
from .errors import AuthError, TransientServiceError
from .hosts import ChangeRequestHost
from .notify import Notifier
from .sessions import SessionFactory
from .status import StatusProjector

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)

# keyword -> files a change mentioning it probably touches
_FILE_HINTS = (
    (("homepage", "page"), ["app/page.tsx", "index.tsx", "pages/index.tsx"]),
    (("component", "button"), ["components/", "src/components/"]),
    (("style", "css"), ["styles/", "app/globals.css"]),
    (("readme",), ["README.md"]),
    (("package", "dependency"), ["package.json"]),
)
_DEFAULT_HINT = ["app/", "src/"]


def determine_files_to_modify(prompt: str) -> List[str]:
    """Guess which files a prompt is about from its keywords."""
    lowered = prompt.lower()
    suggested: List[str] = []
    for keywords, files in _FILE_HINTS:
        if any(keyword in lowered for keyword in keywords):
            suggested.extend(f for f in files if f not in suggested)
    return suggested or list(_DEFAULT_HINT)


def new_branch_name() -> str:
    """Unique per call, so a re-executed step never collides with itself."""
    return f"{BRANCH_PREFIX}-{int(time.time())}-{uuid.uuid4().hex[:6]}"


@dataclass
class StepServices:
    """Live collaborators handed to steps. Never checkpointed."""

    session_factory: SessionFactory
    agent: CodeAgent
    host: ChangeRequestHost
    notifier: Notifier
    projector: StatusProjector
    classifier: ErrorClassifier


@dataclass
class StepContext:
    run_id: str
    attempt: int
    services: StepServices


class Step(Generic[InputT, OutputT], metaclass=abc.ABCMeta):
    """One unit of work in the pipeline."""

    id: str
    output_model: Type[OutputT]

    def applies_to(self, descriptor: RunDescriptor) -> bool:
        return True

    @abc.abstractmethod
    def build_input(
        self, descriptor: RunDescriptor, outputs: Dict[str, BaseModel]
    ) -> InputT:
        """Derive this step's input from the descriptor and prior outputs."""
        raise NotImplementedError

    @abc.abstractmethod
    async def run(self, ctx: StepContext, data: InputT) -> OutputT:
        raise NotImplementedError

    def public_result(self, output: OutputT) -> Optional[Dict[str, Any]]:
        """Plain data to expose on the run document once this step succeeds."""
        return None

    async def execute(self, ctx: StepContext, data: InputT) -> OutputT:
        """Run the step, reporting its own progress to the status projector.

        A failure is reported as ``failed`` only when it is fatal; retryable
        failures leave the step ``running`` for the engine to retry.
        """
        projector = ctx.services.projector
        await projector.step_started(ctx.run_id, self.id)
        try:
            output = await self.run(ctx, data)
        except Exception as exc:
            if ctx.services.classifier.classify(exc) is Verdict.FATAL:
                await projector.step_failed(ctx.run_id, self.id, str(exc))
            raise
        await projector.step_completed(ctx.run_id, self.id)
        return output


class InitializeSandbox(Step[InitializeInput, InitializeOutput]):
    id = INITIALIZE_SANDBOX
    output_model = InitializeOutput

    def build_input(self, descriptor, outputs):
        return InitializeInput(
            repo_locator=descriptor.repo_locator, credential=descriptor.credential
        )

    async def run(self, ctx: StepContext, data: InitializeInput) -> InitializeOutput:
        logger.info(f"Initializing sandbox for repository: {data.repo_locator}")
        locator = parse_repo_locator(data.repo_locator)
        info = await ctx.services.host.describe_repository(locator, data.credential)
        if not info.can_push:
            raise AuthError(f"Credential cannot push to {info.full_name}")

        descriptor = SessionDescriptor(repo_locator=locator.url, credential=data.credential)
        async with ctx.services.session_factory.session(descriptor) as session:
            remote = await session.check("git", "remote", "-v")

        logger.info(f"Sandbox initialized for {info.full_name} (default branch {info.default_branch})")
        return InitializeOutput(
            repo_locator=locator.url,
            repo_info=remote.stdout.strip(),
            default_branch=info.default_branch,
        )


class AnalyzeRepository(Step[AnalyzeInput, AnalyzeOutput]):
    id = ANALYZE_REPOSITORY
    output_model = AnalyzeOutput

    def build_input(self, descriptor, outputs):
        initialized: InitializeOutput = outputs[INITIALIZE_SANDBOX]
        return AnalyzeInput(
            repo_locator=initialized.repo_locator,
            credential=descriptor.credential,
            prompt=descriptor.prompt,
            repo_info=initialized.repo_info,
        )

    async def run(self, ctx: StepContext, data: AnalyzeInput) -> AnalyzeOutput:
        logger.info(f'Analyzing repository structure for prompt: "{data.prompt}"')
        descriptor = SessionDescriptor(repo_locator=data.repo_locator, credential=data.credential)
        async with ctx.services.session_factory.session(descriptor) as session:
            root_structure = await session.list_files(".")

        files_to_modify = determine_files_to_modify(data.prompt)
        logger.info(f"Repository analysis complete. Suggested files to modify: {files_to_modify}")
        return AnalyzeOutput(
            files_to_modify=files_to_modify,
            analysis=RepositoryAnalysis(
                prompt=data.prompt,
                repo_info=data.repo_info,
                root_structure=root_structure,
                suggested_files=files_to_modify,
            ),
        )


class ExecuteChanges(Step[ExecuteInput, ExecuteOutput]):
    """Let the agent edit a fresh checkout, then commit and push a new branch."""

    id = EXECUTE_CHANGES
    output_model = ExecuteOutput

    def build_input(self, descriptor, outputs):
        analyzed: AnalyzeOutput = outputs[ANALYZE_REPOSITORY]
        initialized: InitializeOutput = outputs[INITIALIZE_SANDBOX]
        return ExecuteInput(
            repo_locator=initialized.repo_locator,
            credential=descriptor.credential,
            prompt=descriptor.prompt,
            files_to_modify=analyzed.files_to_modify,
        )

    async def _push_failure(
        self, ctx: StepContext, data: ExecuteInput, branch: str, stderr: str
    ) -> Exception:
        """Ask the host whether a rejected push is a permission problem."""
        message = f"Failed to push branch {branch}: {stderr}"
        info = await ctx.services.host.describe_repository(
            parse_repo_locator(data.repo_locator), data.credential
        )
        if not info.can_push:
            return AuthError(f"{message} (credential cannot push to {info.full_name})")
        return TransientServiceError(message)

    async def run(self, ctx: StepContext, data: ExecuteInput) -> ExecuteOutput:
        logger.info(f'Executing AI-driven changes for: "{data.prompt}"')
        logger.info(f"Target files: {', '.join(data.files_to_modify)}")
        branch = new_branch_name()

        descriptor = SessionDescriptor(repo_locator=data.repo_locator, credential=data.credential)
        async with ctx.services.session_factory.session(descriptor) as session:
            await session.check("git", "checkout", "-b", branch)
            report = await ctx.services.agent.modify(data.prompt, session, data.files_to_modify)
            logger.debug(f"AI agent response: {report.response}")

            await session.check("git", "add", ".", *EXCLUDED_PATHSPECS)
            diff = await session.check("git", "diff", "--cached", "--name-only")
            files_modified = [line.strip() for line in diff.stdout.splitlines() if line.strip()]
            if not files_modified:
                logger.info("No changes detected, creating minimal change")
                await session.write_file(
                    ACTIVITY_FILE, f"AI Agent Activity: {utcnow().isoformat()}\n"
                )
                await session.check("git", "add", ACTIVITY_FILE)
                files_modified = [ACTIVITY_FILE]

            await session.check("git", "commit", "-m", f"AI: {data.prompt[:50]}")
            push = await session.run("git", "push", "origin", branch)
            if not push.ok:
                raise await self._push_failure(ctx, data, branch, push.stderr.strip())

        logger.info(f"Changes executed successfully on branch: {branch}")
        return ExecuteOutput(
            branch=branch,
            changes=ChangeSummary(
                prompt=data.prompt,
                files_modified=files_modified,
                branch=branch,
                agent_response=report.response,
            ),
        )


class CreatePullRequest(Step[PublishInput, PublishOutput]):
    id = CREATE_PULL_REQUEST
    output_model = PublishOutput

    def build_input(self, descriptor, outputs):
        executed: ExecuteOutput = outputs[EXECUTE_CHANGES]
        initialized: InitializeOutput = outputs[INITIALIZE_SANDBOX]
        return PublishInput(
            repo_locator=initialized.repo_locator,
            credential=descriptor.credential,
            branch=executed.branch,
            base_branch=initialized.default_branch,
            changes=executed.changes,
        )

    async def run(self, ctx: StepContext, data: PublishInput) -> PublishOutput:
        logger.info(f"Creating pull request for branch: {data.branch}")
        changes = data.changes
        request = await ctx.services.host.open_change_request(
            parse_repo_locator(data.repo_locator),
            data.credential,
            head=data.branch,
            base=data.base_branch,
            title=f"AI Change: {changes.prompt[:60]}",
            body=(
                "Automated changes by coding agent.\n\n"
                f"Prompt: {changes.prompt}\n\n"
                f"Files modified: {', '.join(changes.files_modified)}"
            ),
        )
        logger.info(f"Pull request created successfully: {request.url}")
        return PublishOutput(pr_url=request.url, pr_number=request.number)

    def public_result(self, output: PublishOutput) -> Dict[str, Any]:
        return {"prUrl": output.pr_url, "prNumber": output.pr_number}


class NotifyUser(Step[NotifyInput, NotifyOutput]):
    id = NOTIFY_USER
    output_model = NotifyOutput

    def applies_to(self, descriptor: RunDescriptor) -> bool:
        return bool(descriptor.recipient)

    def build_input(self, descriptor, outputs):
        published: PublishOutput = outputs[CREATE_PULL_REQUEST]
        executed: ExecuteOutput = outputs[EXECUTE_CHANGES]
        return NotifyInput(
            recipient=descriptor.recipient,
            pr_url=published.pr_url,
            changes=executed.changes,
            status="completed",
        )

    async def run(self, ctx: StepContext, data: NotifyInput) -> NotifyOutput:
        logger.info(f"Sending notification to: {data.recipient}")
        notification_id = await ctx.services.notifier.send(data)
        return NotifyOutput(status="sent", notification_id=notification_id)


PIPELINE: tuple[Step, ...] = (
    InitializeSandbox(),
    AnalyzeRepository(),
    ExecuteChanges(),
    CreatePullRequest(),
    NotifyUser(),
)
