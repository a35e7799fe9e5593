import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class BuildEventType(Enum):
    """
    Enumeration for instrumentation events emitted while a prompt is built.
    """
    STAGE_START = 'stage_start'
    STAGE_FINISH = 'stage_finish'
    STAGE_ERROR = 'stage_error'
    WARNING = 'warning'
    STAT = 'stat'


class BuildEvent:
    """
    Class representing an instrumentation event with type, stage and data.
    Handlers registered for a type run when the event is handled.
    """
    _handlers: Dict[BuildEventType, List[Callable[['BuildEvent'], None]]] = {}

    def __init__(self, type: BuildEventType, stage: Optional[str] = None, data: Any = None, quiet: bool = False):
        """
        Args:
            type (BuildEventType): The type of the event.
            stage (Optional[str]): The stage that was running when the event occurred.
            data (Any): The data associated with the event.
            quiet (bool): Quiet mode (event will not execute handlers)
        """
        self.type = type
        self.stage = stage
        self.data = data
        self.quiet = quiet
        self.timestamp = time.perf_counter()

    @classmethod
    def register_handler(cls, event_type: BuildEventType, handler: Callable[['BuildEvent'], None]):
        if event_type not in cls._handlers:
            cls._handlers[event_type] = []
        cls._handlers[event_type].append(handler)

    @classmethod
    def clear_handlers(cls):
        cls._handlers = {}

    def handle(self):
        if not self.quiet and self.type in self._handlers:
            for handler in self._handlers[self.type]:
                handler(self)

    def __repr__(self):
        return f"BuildEvent({self.type.value}, stage={self.stage!r}, data={self.data!r})"


@dataclass
class TraceStage:
    name: str
    started_at: float
    finished_at: Optional[float] = None
    error: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return self.finished_at - self.started_at


class TraceCollector:
    """
    Instrumenter that records a per-stage trace of a build: duration,
    stats and warnings. Pass it as the context instrumenter and read
    `stages` afterwards.
    """

    def __init__(self):
        self.stages: List[TraceStage] = []
        self.events: List[BuildEvent] = []
        self._open: Dict[str, TraceStage] = {}

    def __call__(self, event: BuildEvent) -> None:
        self.events.append(event)

        if event.type == BuildEventType.STAGE_START:
            stage = TraceStage(name=event.stage, started_at=event.timestamp)
            self.stages.append(stage)
            self._open[event.stage] = stage
            return

        stage = self._open.get(event.stage) if event.stage else None
        if event.type in (BuildEventType.STAGE_FINISH, BuildEventType.STAGE_ERROR):
            if stage is not None:
                stage.finished_at = event.timestamp
                if event.type == BuildEventType.STAGE_ERROR:
                    stage.error = str(event.data)
                del self._open[event.stage]
        elif event.type == BuildEventType.WARNING and stage is not None:
            stage.warnings.append(str(event.data))
        elif event.type == BuildEventType.STAT and stage is not None:
            stage.stats.update(event.data or {})

    def stage(self, name: str) -> Optional[TraceStage]:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def to_dict(self) -> Dict[str, Any]:
        return {
            stage.name: {
                'duration': stage.duration,
                'error': stage.error,
                'stats': dict(stage.stats),
                'warnings': list(stage.warnings),
            }
            for stage in self.stages
        }
