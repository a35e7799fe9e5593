from promptsmith.config import BuilderConfig
from .pipeline import Pipeline, Stage
from .stages import (
    ExamplesStage,
    HistoryStage,
    InjectionsStage,
    LoreStage,
    PinnedPromptsStage,
    PlanAssemblyStage,
    PrepareStage,
    TrimmingStage,
)


def default_pipeline(config=BuilderConfig) -> Pipeline:
    """The standard stage chain; `plan_assembly` is outermost so its `after` sees the final blocks."""
    return Pipeline([
        PlanAssemblyStage(),
        PrepareStage(),
        PinnedPromptsStage(),
        LoreStage(),
        ExamplesStage(),
        HistoryStage(),
        InjectionsStage(),
        TrimmingStage(
            eviction_order=config.EVICTION_ORDER,
            per_message_overhead=config.MESSAGE_OVERHEAD_TOKENS,
            preserve_latest_user=config.PRESERVE_LATEST_USER_MESSAGE,
        ),
    ])


__all__ = [
    'Pipeline', 'Stage', 'default_pipeline',
    'PlanAssemblyStage', 'PrepareStage', 'PinnedPromptsStage', 'LoreStage',
    'ExamplesStage', 'HistoryStage', 'InjectionsStage', 'TrimmingStage',
]
