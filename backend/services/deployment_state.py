"""
Deployment state machine.

`apply_transition` is the only function that mutates a project's deployment
fields. Phases move along TRANSITIONS; the coarse `deployment_status` the
clients see is derived from the phase.
"""
from enum import Enum
from typing import Any, Optional

from errors import InvalidTransitionError


class DeploymentStatus(str, Enum):
    NOT_DEPLOYED = "Not Deployed"
    PENDING = "Pending"
    DEPLOYED = "Deployed"
    FAILED = "Failed"


class DeployPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    PUSHING = "pushing"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STATUSES = {DeploymentStatus.DEPLOYED.value, DeploymentStatus.FAILED.value}

# A phase may re-enter itself to update its label/progress.
TRANSITIONS: dict[DeployPhase, set[DeployPhase]] = {
    DeployPhase.IDLE: {DeployPhase.CHECKING},
    DeployPhase.CHECKING: {DeployPhase.CHECKING, DeployPhase.PUSHING, DeployPhase.FAILED},
    DeployPhase.PUSHING: {DeployPhase.PUSHING, DeployPhase.DEPLOYING, DeployPhase.SUCCESS, DeployPhase.FAILED},
    DeployPhase.DEPLOYING: {DeployPhase.DEPLOYING, DeployPhase.SUCCESS, DeployPhase.FAILED},
    DeployPhase.SUCCESS: {DeployPhase.CHECKING},
    DeployPhase.FAILED: {DeployPhase.CHECKING},
}

PHASE_STATUS = {
    DeployPhase.IDLE: DeploymentStatus.NOT_DEPLOYED,
    DeployPhase.CHECKING: DeploymentStatus.PENDING,
    DeployPhase.PUSHING: DeploymentStatus.PENDING,
    DeployPhase.DEPLOYING: DeploymentStatus.PENDING,
    DeployPhase.SUCCESS: DeploymentStatus.DEPLOYED,
    DeployPhase.FAILED: DeploymentStatus.FAILED,
}

PHASE_LABELS = {
    DeployPhase.CHECKING: "Checking connections...",
    DeployPhase.PUSHING: "Pushing code to GitHub...",
    DeployPhase.DEPLOYING: "Deploying to Vercel...",
    DeployPhase.SUCCESS: "Deployment complete",
    DeployPhase.FAILED: "Deployment failed",
}

# Progress at which each stage starts / finishes
PROGRESS = {
    "checking": 10,
    "repository": 20,
    "pushing": 30,
    "pushed": 60,
    "deploying": 70,
    "deployed": 85,
    "success": 100,
}

# Fields a transition may set. They are never cleared by a transition.
RESULT_FIELDS = {
    "github_repo_url",
    "github_repo_id",
    "vercel_url",
    "vercel_settings_url",
    "vercel_project_id",
    "vercel_deployment_id",
}


def current_phase(project) -> DeployPhase:
    return DeployPhase(project.deployment_phase or DeployPhase.IDLE.value)


def is_new_attempt(current: DeployPhase, target: DeployPhase) -> bool:
    return target == DeployPhase.CHECKING and current in (DeployPhase.IDLE, DeployPhase.SUCCESS, DeployPhase.FAILED)


def apply_transition(
    project,
    phase: DeployPhase,
    label: Optional[str] = None,
    progress: Optional[int] = None,
    history_entry: Optional[dict[str, Any]] = None,
    **fields: Any,
) -> None:
    """
    Move `project` to `phase`. Raises InvalidTransitionError for moves outside
    TRANSITIONS. Progress only goes up within an attempt; a failure keeps the
    last progress value and stores its message as the step label.
    """
    current = current_phase(project)
    if phase not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"Cannot move deployment from {current.value} to {phase.value}")
    unknown = set(fields) - RESULT_FIELDS
    if unknown:
        raise ValueError(f"Unknown deployment fields: {', '.join(sorted(unknown))}")

    previous_progress = project.deployment_progress or 0
    if is_new_attempt(current, phase):
        new_progress = progress if progress is not None else 0
    elif phase == DeployPhase.FAILED or progress is None:
        new_progress = previous_progress
    else:
        new_progress = max(previous_progress, progress)

    project.deployment_phase = phase.value
    project.deployment_status = PHASE_STATUS[phase].value
    project.deployment_step = label or PHASE_LABELS[phase]
    project.deployment_progress = max(0, min(100, new_progress))
    for key, value in fields.items():
        if value is not None:
            setattr(project, key, value)
    if history_entry is not None:
        # Reassign so the JSON column is flagged dirty
        project.deployment_history = [*(project.deployment_history or []), history_entry]
