from typing import Callable, Iterator, List, Optional

from promptsmith.config import BuilderConfig
from promptsmith.context import BuildContext
from promptsmith.errors import ConfigurationError, PromptBuildError, StageError
from promptsmith.events import BuildEventType
from promptsmith.utils.utils import create_logger, resolve_log_level

pipeline_log = create_logger(__name__, entity_name='PIPELINE', level=resolve_log_level(BuilderConfig.LOG_LEVEL))

Hook = Callable[[BuildContext], None]


class Stage:
    """
    A named pipeline step with two hooks. `before` runs on the way in, in
    registration order; `after` runs on the way out, in reverse order, for
    every stage whose `before` completed.

    Subclasses override the hooks; plain callables can be passed instead.
    """
    name: Optional[str] = None

    def __init__(self, name: Optional[str] = None, before: Optional[Hook] = None, after: Optional[Hook] = None):
        self.name = name or self.name or type(self).__name__
        self._before = before
        self._after = after

    def before(self, ctx: BuildContext) -> None:
        if self._before is not None:
            self._before(ctx)

    def after(self, ctx: BuildContext) -> None:
        if self._after is not None:
            self._after(ctx)

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


def _attach_stage(error: Exception, stage_name: str) -> PromptBuildError:
    if isinstance(error, PromptBuildError):
        if error.stage is None:
            error.stage = stage_name
        return error
    return StageError(stage_name, error)


class Pipeline:
    def __init__(self, stages: Optional[List[Stage]] = None):
        self._stages: List[Stage] = []
        for stage in stages or []:
            self.use(stage)

    def _index(self, name: str) -> int:
        for index, stage in enumerate(self._stages):
            if stage.name == name:
                return index
        raise ConfigurationError(f"Unknown pipeline stage '{name}'")

    def _check_unique(self, stage: Stage, ignore: Optional[str] = None) -> None:
        if stage.name != ignore and self.has(stage.name):
            raise ConfigurationError(f"Pipeline stage '{stage.name}' is already registered")

    def use(self, stage: Stage) -> 'Pipeline':
        self._check_unique(stage)
        self._stages.append(stage)
        return self

    def insert_before(self, target: str, stage: Stage) -> 'Pipeline':
        index = self._index(target)
        self._check_unique(stage)
        self._stages.insert(index, stage)
        return self

    def insert_after(self, target: str, stage: Stage) -> 'Pipeline':
        index = self._index(target)
        self._check_unique(stage)
        self._stages.insert(index + 1, stage)
        return self

    def replace(self, target: str, stage: Stage) -> 'Pipeline':
        index = self._index(target)
        self._check_unique(stage, ignore=target)
        self._stages[index] = stage
        return self

    def remove(self, target: str) -> 'Pipeline':
        del self._stages[self._index(target)]
        return self

    def has(self, name: str) -> bool:
        return any(stage.name == name for stage in self._stages)

    @property
    def names(self) -> List[str]:
        return [stage.name for stage in self._stages]

    def get(self, name: str) -> Stage:
        return self._stages[self._index(name)]

    def copy(self) -> 'Pipeline':
        # stages are shared, the ordering is not
        return Pipeline(list(self._stages))

    def __iter__(self) -> Iterator[Stage]:
        return iter(list(self._stages))

    def __len__(self) -> int:
        return len(self._stages)

    def run(self, ctx: BuildContext) -> BuildContext:
        """
        Runs the onion: befores in order, then afters of the entered stages
        in reverse. A failing `before` stops the descent; the entered stages
        still unwind and the first error is raised with its stage name.
        """
        entered: List[Stage] = []
        error: Optional[PromptBuildError] = None

        for stage in self._stages:
            ctx.current_stage = stage.name
            ctx.instrument(BuildEventType.STAGE_START, stage=stage.name)
            try:
                stage.before(ctx)
            except Exception as e:
                error = _attach_stage(e, stage.name)
                ctx.failed = True
                ctx.instrument(BuildEventType.STAGE_ERROR, error, stage=stage.name)
                pipeline_log.error(f"Stage '{stage.name}' failed: {error.message}")
                break
            entered.append(stage)

        while entered:
            stage = entered.pop()
            ctx.current_stage = stage.name
            try:
                stage.after(ctx)
            except Exception as e:
                after_error = _attach_stage(e, stage.name)
                ctx.failed = True
                ctx.instrument(BuildEventType.STAGE_ERROR, after_error, stage=stage.name)
                pipeline_log.error(f"Stage '{stage.name}' failed while unwinding: {after_error.message}")
                if error is None:
                    error = after_error
                continue
            ctx.instrument(BuildEventType.STAGE_FINISH, stage=stage.name)

        ctx.current_stage = None
        if error is not None:
            if isinstance(error, StageError):
                raise error from error.cause
            raise error
        return ctx
