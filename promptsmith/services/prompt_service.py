from typing import Any, Callable, Dict, Mapping, Optional, Union

import pydantic

from promptsmith.config import BuilderConfig
from promptsmith.context import BuildContext
from promptsmith.dialects import convert, get_dialect
from promptsmith.dto import BuildRequestDTO
from promptsmith.errors import ConfigurationError, PromptBuildError, ValidationError
from promptsmith.events import BuildEvent
from promptsmith.macros import MacroProcessor, create_macro_processor
from promptsmith.models import Plan
from promptsmith.pipeline import Pipeline, default_pipeline
from promptsmith.utils.tokenizers import TokenEstimator, get_token_estimator
from promptsmith.utils.utils import create_logger, resolve_log_level
from .timed_state_registry import TimedStateRegistry

service_log = create_logger(__name__, entity_name='PROMPT_SERVICE', level=resolve_log_level(BuilderConfig.LOG_LEVEL))

BuildRequest = Union[BuildRequestDTO, Mapping[str, Any]]
Instrumenter = Callable[[BuildEvent], None]


class PromptBuilder:
    """
    Entry point for prompt assembly: validates a request, runs the pipeline
    over a fresh context and serializes the resulting plan.
    """

    def __init__(self, config=BuilderConfig, pipeline: Optional[Pipeline] = None,
                 token_estimator: Optional[TokenEstimator] = None,
                 macro_processor: Optional[MacroProcessor] = None,
                 timed_states: Optional[TimedStateRegistry] = None):
        self.config = config
        self.pipeline = pipeline if pipeline is not None else default_pipeline(config)
        self.token_estimator = token_estimator or get_token_estimator(config.MODEL_GROUP)
        self.macro_processor = macro_processor or create_macro_processor()
        self.timed_states = timed_states if timed_states is not None else TimedStateRegistry()

    def parse_request(self, request: BuildRequest) -> BuildRequestDTO:
        if isinstance(request, BuildRequestDTO):
            return request
        try:
            return BuildRequestDTO.model_validate(request)
        except pydantic.ValidationError as e:
            service_log.error(f"Rejected build request: {e.error_count()} validation errors")
            raise ConfigurationError(f"Invalid build request: {e}") from e

    def create_context(self, request: BuildRequestDTO, timed_state: Optional[Dict[str, Dict[str, Any]]] = None,
                       instrumenter: Optional[Instrumenter] = None) -> BuildContext:
        lore_books = [book.to_model() for book in request.lore_books]
        character = request.character
        if character is not None and character.character_book is not None:
            book = character.character_book
            if not book.name:
                book = book.model_copy(update={'name': character.name or 'character'})
            lore_books.append(book.to_model())

        preset = request.preset
        strict = self.config.STRICT if preset.strict is None else preset.strict
        return BuildContext(
            character=character,
            user=request.user,
            history=list(request.history),
            user_message=request.user_message,
            preset=preset,
            lore_books=lore_books,
            turn_count=request.turn_count,
            timed_state=timed_state,
            token_estimator=self.token_estimator,
            macro_processor=self.macro_processor,
            instrumenter=instrumenter,
            strict=strict,
        )

    def build(self, request: BuildRequest, timed_state: Optional[Dict[str, Dict[str, Any]]] = None,
              instrumenter: Optional[Instrumenter] = None) -> Plan:
        request = self.parse_request(request)
        if request.dialect:
            get_dialect(request.dialect)

        ctx = self.create_context(request, timed_state=timed_state, instrumenter=instrumenter)
        try:
            self.pipeline.run(ctx)
        except PromptBuildError as e:
            service_log.error(f"Prompt build failed: {e}")
            raise

        if ctx.plan is None:
            raise ConfigurationError("The pipeline produced no plan; is the 'plan_assembly' stage registered?")
        service_log.debug(f"Built plan with {len(ctx.plan)} blocks and {len(ctx.warnings)} warnings")
        return ctx.plan

    def build_messages(self, request: BuildRequest, dialect: Optional[str] = None,
                       timed_state: Optional[Dict[str, Dict[str, Any]]] = None,
                       instrumenter: Optional[Instrumenter] = None, **options) -> Any:
        request = self.parse_request(request)
        dialect = dialect or request.dialect or self.config.DEFAULT_DIALECT
        get_dialect(dialect)
        plan = self.build(request, timed_state=timed_state, instrumenter=instrumenter)
        return convert(plan, dialect, **options)

    def build_for_conversation(self, request: BuildRequest, dialect: Optional[str] = None,
                               instrumenter: Optional[Instrumenter] = None, **options) -> Any:
        """
        Like `build_messages`, with the timed-effect state of the request's
        conversation held under that conversation's lock for the whole build.
        """
        request = self.parse_request(request)
        if not request.conversation_id:
            raise ValidationError("conversation_id is required to track timed effects")
        with self.timed_states.session(request.conversation_id) as timed_state:
            return self.build_messages(request, dialect=dialect, timed_state=timed_state,
                                       instrumenter=instrumenter, **options)
