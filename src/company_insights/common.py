"""
Common classes for the streaming analysis pipeline: progress events, run state
and the record handed to the result store
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


SEARCH_STEP = 0
DETAILS_STEP = 1
ANALYSIS_STEP = 2
VOICE_STEP = 3

STEP_NAMES = {
    SEARCH_STEP: "Live Web Search",
    DETAILS_STEP: "Company Research",
    ANALYSIS_STEP: "Strategic Analysis",
    VOICE_STEP: "Solution Mapping",
}

STEP_COMPLETE_LABELS = {
    SEARCH_STEP: "Web search completed",
    DETAILS_STEP: "Company details completed",
    ANALYSIS_STEP: "Analysis completed",
    VOICE_STEP: "Solution mapping completed",
}


class EventKind(str, Enum):
    FRAGMENT = "fragment"
    STAGE_DONE = "stage_done"
    TRANSITION = "transition"
    SOURCES = "sources"
    NOT_FOUND = "not_found"
    FATAL_ERROR = "fatal_error"
    COMPLETED = "completed"


class PipelineEvent:
    """One progress event emitted by the orchestrator"""
    def __init__(self, kind: EventKind, step: int, text: str = None, message: str = None,
                 data: Any = None, error: str = None, final_step: bool = False, to_step: int = None):
        self.kind = kind
        self.step = step
        self.text = text
        self.message = message
        self.data = data
        self.error = error
        self.final_step = final_step
        self.to_step = to_step

    @classmethod
    def fragment(cls, step: int, text: str) -> "PipelineEvent":
        return cls(EventKind.FRAGMENT, step, text=text)

    @classmethod
    def stage_done(cls, step: int) -> "PipelineEvent":
        return cls(EventKind.STAGE_DONE, step, message=STEP_COMPLETE_LABELS[step])

    @classmethod
    def transition(cls, message: str, from_step: int, to_step: int) -> "PipelineEvent":
        return cls(EventKind.TRANSITION, from_step, message=message, to_step=to_step)

    @classmethod
    def sources(cls, metadata: Any) -> "PipelineEvent":
        return cls(EventKind.SOURCES, SEARCH_STEP, data=metadata)

    @classmethod
    def not_found(cls, step: int, message: str) -> "PipelineEvent":
        return cls(EventKind.NOT_FOUND, step, message=message, final_step=True)

    @classmethod
    def fatal_error(cls, step: int, error: str) -> "PipelineEvent":
        return cls(EventKind.FATAL_ERROR, step, error=error)

    @classmethod
    def completed(cls, step: int, run_id: str, status: "RunStatus") -> "PipelineEvent":
        return cls(EventKind.COMPLETED, step, data={"analysisUuid": run_id, "status": status.value})

    def __repr__(self):
        return f"PipelineEvent({self.kind.value}, step={self.step})"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    NOT_FOUND = "notFound"
    FAILED = "failed"


class PipelinePhase(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    DETAILING = "detailing"
    ANALYZING = "analyzing"
    VOICING = "voicing"
    FINISHED = "finished"


@dataclass
class AnalysisRequest:
    company_name: str
    number_of_employees: Optional[str] = None
    company_gstin: Optional[str] = None
    model: Optional[str] = None

    def __post_init__(self):
        if not self.company_name or not self.company_name.strip():
            raise ValueError("company_name must be a non-empty string")
        self.company_name = self.company_name.strip()


def elapsed_ms(started_at: float) -> int:
    """Whole milliseconds since a perf_counter reading, rounded up."""
    return max(1, math.ceil((time.perf_counter() - started_at) * 1000))


@dataclass
class AnalysisRun:
    """In-progress or completed pipeline execution."""

    company_name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    stage_outputs: Dict[int, str] = field(default_factory=dict)
    search_context: Optional[str] = None
    sources_metadata: Any = None
    phase: PipelinePhase = PipelinePhase.IDLE
    status: RunStatus = RunStatus.RUNNING
    error: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)
    latency_ms: Optional[int] = None

    def append(self, step: int, text: str) -> None:
        self.stage_outputs[step] = self.stage_outputs.get(step, "") + text

    def text(self, step: int) -> str:
        return self.stage_outputs.get(step, "")

    def enter(self, phase: PipelinePhase) -> None:
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(f"run {self.id} already finished with status {self.status.value}")
        self.phase = phase

    def finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        if status is RunStatus.RUNNING:
            raise ValueError("finish() needs a terminal status")
        if self.status is not RunStatus.RUNNING:
            raise RuntimeError(f"run {self.id} already finished with status {self.status.value}")
        self.status = status
        self.error = error
        self.phase = PipelinePhase.FINISHED
        self.latency_ms = elapsed_ms(self.started_at)

    @property
    def has_search_evidence(self) -> bool:
        return bool(self.sources_metadata is not None and self.sources_metadata.total_sources > 0)


@dataclass
class AnalysisRecord:
    """One persisted analysis row, as handed to the result store."""

    uuid: str
    company_name: str
    model: str
    latency_ms: int
    analysis: str
    company_details: str
    reviews: Optional[str] = None
    sources: Optional[list] = None
    number_of_employees: Optional[str] = None
    company_gstin: Optional[str] = None
