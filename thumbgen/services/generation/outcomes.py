from dataclasses import dataclass, field
from enum import Enum


class FailureReason(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    TIMEOUT = "TIMEOUT"
    GENERATION_ERROR = "GENERATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


class TaskState(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    UPLOADING = "uploading"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskSuccess:
    artifact_id: str
    asset_path: str
    asset_url: str
    renditions: dict[int, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class TaskFailure:
    artifact_id: str
    reason: FailureReason
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return False


Outcome = TaskSuccess | TaskFailure


def partition(outcomes: list[Outcome]) -> tuple[list[TaskSuccess], list[TaskFailure]]:
    succeeded: list[TaskSuccess] = []
    failed: list[TaskFailure] = []
    for outcome in outcomes:
        if isinstance(outcome, TaskSuccess):
            succeeded.append(outcome)
        elif isinstance(outcome, TaskFailure):
            failed.append(outcome)
        else:
            raise TypeError(f"unexpected outcome type: {type(outcome).__name__}")
    return succeeded, failed
