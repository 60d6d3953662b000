"""Shared constants for repoflow."""

INITIALIZE_SANDBOX = "initializeSandbox"
ANALYZE_REPOSITORY = "analyzeRepository"
EXECUTE_CHANGES = "executeChanges"
CREATE_PULL_REQUEST = "createPullRequest"
NOTIFY_USER = "notifyUser"

CORE_STEP_IDS = (
    INITIALIZE_SANDBOX,
    ANALYZE_REPOSITORY,
    EXECUTE_CHANGES,
    CREATE_PULL_REQUEST,
)

# Expected upper bounds (seconds) before the watchdog flags a step.
DEFAULT_STEP_BOUNDS = {
    INITIALIZE_SANDBOX: 10.0,
    ANALYZE_REPOSITORY: 15.0,
    EXECUTE_CHANGES: 60.0,
    CREATE_PULL_REQUEST: 30.0,
    NOTIFY_USER: 30.0,
}

BRANCH_PREFIX = "ai-change"
ACTIVITY_FILE = ".ai-activity.md"

# Archives are never committed by the pipeline.
EXCLUDED_PATHSPECS = (
    ":!*.tar",
    ":!*.tar.gz",
    ":!*.tar.bz2",
    ":!*.tar.xz",
    ":!*.tgz",
    ":!*.tbz",
    ":!*.tbz2",
    ":!*.txz",
)
