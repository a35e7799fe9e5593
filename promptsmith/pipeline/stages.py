from typing import List, Optional, Sequence

from promptsmith.constants import (
    EXAMPLE_SEPARATOR,
    BudgetGroup,
    LorePosition,
    MessageRole,
    Slot,
)
from promptsmith.context import BuildContext
from promptsmith.dto import PresetDTO
from promptsmith.errors import ValidationError
from promptsmith.events import TraceCollector
from promptsmith.lore.engine import LoreEngine
from promptsmith.macros import create_macro_processor
from promptsmith.models import Block, Plan
from promptsmith.trimmer import trim
from promptsmith.utils.tokenizers import HeuristicEstimator
from promptsmith.utils.utils import message_texts
from .pipeline import Stage

ORIGINAL_PLACEHOLDER = '{{original}}'


def _override(own: str, original: str) -> str:
    """A character-level prompt replaces the preset one; {{original}} splices it back in."""
    if not own or not own.strip():
        return original
    return own.replace(ORIGINAL_PLACEHOLDER, original or '')


class PlanAssemblyStage(Stage):
    name = 'plan_assembly'

    def after(self, ctx: BuildContext) -> None:
        if ctx.failed:
            return
        trace = ctx.instrumenter if isinstance(ctx.instrumenter, TraceCollector) else None
        ctx.plan = Plan(
            blocks=tuple(ctx.blocks),
            trim_report=ctx.trim_report,
            warnings=tuple(ctx.warnings),
            lore_result=ctx.lore_result,
            trace=trace,
        )


class PrepareStage(Stage):
    name = 'prepare'

    def before(self, ctx: BuildContext) -> None:
        if ctx.character is None or not (ctx.character.name or '').strip():
            raise ValidationError("A character with a name is required")
        if ctx.user is None or not (ctx.user.name or '').strip():
            raise ValidationError("A user with a name is required")

        if ctx.preset is None:
            ctx.preset = PresetDTO()
        if ctx.token_estimator is None:
            ctx.token_estimator = HeuristicEstimator()
        if ctx.macro_processor is None:
            ctx.macro_processor = create_macro_processor()
        if ctx.turn_count is None:
            ctx.turn_count = sum(1 for message in ctx.history if message.role == MessageRole.USER)

        ctx.stat(turn_count=ctx.turn_count, history_messages=len(ctx.history))


class PinnedPromptsStage(Stage):
    name = 'pinned_prompts'

    def before(self, ctx: BuildContext) -> None:
        character = ctx.character
        preset = ctx.preset
        sources = (
            (Slot.MAIN_PROMPT, _override(character.system_prompt, preset.main_prompt)),
            (Slot.CHARACTER_DESCRIPTION, character.description),
            (Slot.CHARACTER_PERSONALITY, character.personality),
            (Slot.SCENARIO, character.scenario),
            (Slot.PERSONA_DESCRIPTION, ctx.user.persona),
        )
        for slot, text in sources:
            content = ctx.expand(preset.format(slot, text))
            if not content.strip():
                continue
            ctx.add_block(Block(
                role=MessageRole.SYSTEM,
                content=content,
                slot=slot,
                budget_group=BudgetGroup.SYSTEM,
                removable=False,
            ))


class LoreStage(Stage):
    """
    Scans the lore books against the recent transcript and places the
    activated entries around the character definition blocks.
    """
    name = 'lore'

    def before(self, ctx: BuildContext) -> None:
        if not ctx.lore_books:
            ctx.stat(lore_activated=0)
            return

        window: List[str] = message_texts(ctx.history)
        if ctx.user_message:
            window.append(ctx.user_message)

        engine = LoreEngine(token_estimator=ctx.token_estimator, macro_processor=ctx.macro_processor)
        result = engine.scan(
            window,
            ctx.lore_books,
            budget_tokens=ctx.preset.lore_token_budget,
            turn_count=ctx.turn_count or 0,
            timed_state=ctx.timed_state,
            expand=ctx.expand,
        )
        ctx.lore_result = result

        before_char = [block for block in result.blocks if block.metadata.get('position') == LorePosition.BEFORE_CHAR]
        after_char = [block for block in result.blocks if block.metadata.get('position') != LorePosition.BEFORE_CHAR]

        definitions = [index for index, block in enumerate(ctx.blocks) if block.slot in Slot.CHARACTER_DEFINITIONS]
        before_index = definitions[0] if definitions else len(ctx.blocks)
        after_index = definitions[-1] + 1 if definitions else len(ctx.blocks)

        ctx.insert_blocks(after_index, after_char)
        ctx.insert_blocks(before_index, before_char)

        ctx.stat(
            lore_activated=len(result.activated_entries),
            lore_tokens=result.total_tokens,
            lore_dropped=len(result.dropped_ids),
            lore_passes=result.passes,
        )


def parse_examples(text: str, user_name: str, char_name: str) -> List[List[Block]]:
    """
    Splits a character's example dialogue into examples (separated by
    <START>) made of user/assistant turns. Lines prefixed with the speaker
    start a new turn; other lines continue the current one.
    """
    user_prefixes = ('{{user}}:', f'{user_name}:') if user_name else ('{{user}}:',)
    char_prefixes = ('{{char}}:', f'{char_name}:') if char_name else ('{{char}}:',)

    examples = []
    for chunk in text.split(EXAMPLE_SEPARATOR):
        turns: List[List[str]] = []
        for line in chunk.splitlines():
            stripped = line.strip()
            role = None
            for prefixes, prefix_role in ((user_prefixes, MessageRole.USER), (char_prefixes, MessageRole.ASSISTANT)):
                for prefix in prefixes:
                    if stripped.startswith(prefix):
                        role = prefix_role
                        stripped = stripped[len(prefix):].strip()
                        break
                if role:
                    break
            if role:
                turns.append([role, stripped])
            elif turns and stripped:
                turns[-1][1] = f'{turns[-1][1]}\n{stripped}'.strip()

        blocks = [
            Block(role=role, content=content, slot=Slot.CHAT_EXAMPLES, budget_group=BudgetGroup.EXAMPLES)
            for role, content in turns if content
        ]
        if blocks:
            examples.append(blocks)
    return examples


class ExamplesStage(Stage):
    name = 'examples'

    def before(self, ctx: BuildContext) -> None:
        text = ctx.character.mes_example
        if not text or not text.strip():
            return

        examples = parse_examples(text, ctx.user.name, ctx.character.name)
        for example_index, example in enumerate(examples):
            for block in example:
                ctx.add_block(Block(
                    role=block.role,
                    content=ctx.expand(block.content),
                    slot=Slot.CHAT_EXAMPLES,
                    budget_group=BudgetGroup.EXAMPLES,
                    # later examples are evicted first
                    priority_order=example_index,
                    metadata={'example': example_index, 'eviction_bundle': f'example_{example_index}'},
                ))
        ctx.stat(examples=len(examples))


class HistoryStage(Stage):
    name = 'history'

    def before(self, ctx: BuildContext) -> None:
        total = len(ctx.history)
        for index, message in enumerate(ctx.history):
            ctx.add_block(Block(
                role=message.role,
                content=message.content,
                slot=Slot.CHAT_HISTORY,
                budget_group=BudgetGroup.HISTORY,
                # older messages are evicted first
                priority_order=total - index,
                metadata={'index': index},
                name=message.name,
            ))


class InjectionsStage(Stage):
    """
    Author's note at its depth inside the history, then the pending user
    message and the post-history instructions at the very end.
    """
    name = 'injections'

    def before(self, ctx: BuildContext) -> None:
        preset = ctx.preset

        note = ctx.expand(preset.format(Slot.AUTHORS_NOTE, preset.authors_note))
        if note.strip():
            index = self._depth_index(ctx, preset.authors_note_depth)
            ctx.insert_blocks(index, [Block(
                role=MessageRole.SYSTEM,
                content=note,
                slot=Slot.AUTHORS_NOTE,
                budget_group=BudgetGroup.INJECTIONS,
                metadata={'depth': preset.authors_note_depth},
            )])

        if ctx.user_message:
            ctx.add_block(Block(
                role=MessageRole.USER,
                content=ctx.user_message,
                slot=Slot.USER_MESSAGE,
                budget_group=BudgetGroup.HISTORY,
                removable=False,
            ))

        instructions = _override(ctx.character.post_history_instructions, preset.post_history_instructions)
        instructions = ctx.expand(preset.format(Slot.POST_HISTORY_INSTRUCTIONS, instructions))
        if instructions.strip():
            ctx.add_block(Block(
                role=MessageRole.SYSTEM,
                content=instructions,
                slot=Slot.POST_HISTORY_INSTRUCTIONS,
                budget_group=BudgetGroup.SYSTEM,
                removable=False,
            ))

    @staticmethod
    def _depth_index(ctx: BuildContext, depth: int) -> int:
        # depth 0 sits after the last history message, depth n before the n-th from the end
        history = ctx.block_indices(Slot.CHAT_HISTORY)
        if not history:
            return len(ctx.blocks)
        if depth <= 0:
            return history[-1] + 1
        if depth >= len(history):
            return history[0]
        return history[-depth]


class TrimmingStage(Stage):
    name = 'trimming'

    def __init__(self, eviction_order: Sequence[str], per_message_overhead: int = 0,
                 preserve_latest_user: bool = True, name: Optional[str] = None):
        super().__init__(name=name)
        self.eviction_order = tuple(eviction_order)
        self.per_message_overhead = per_message_overhead
        self.preserve_latest_user = preserve_latest_user

    def before(self, ctx: BuildContext) -> None:
        preset = ctx.preset
        if preset.max_context_tokens is None:
            ctx.stat(trimmed=False)
            return

        overhead = preset.message_overhead_tokens
        preserve = preset.preserve_latest_user_message
        blocks, report = trim(
            ctx.blocks,
            max_tokens=preset.max_context_tokens,
            reserve_tokens=preset.max_response_tokens,
            per_message_overhead=self.per_message_overhead if overhead is None else overhead,
            estimator=ctx.token_estimator,
            eviction_order=preset.eviction_order or self.eviction_order,
            preserve_latest_user=self.preserve_latest_user if preserve is None else preserve,
        )
        ctx.blocks = blocks
        ctx.trim_report = report
        ctx.stat(
            trimmed=True,
            initial_tokens=report.initial_tokens,
            final_tokens=report.final_tokens,
            evictions=report.eviction_count,
        )
        if report.over_budget:
            ctx.warn(
                f"Prompt exceeds the token budget by {report.shortfall} tokens "
                f"({report.final_tokens} > {report.budget_tokens}) after evicting every removable block"
            )
