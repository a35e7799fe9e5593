from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from promptsmith.errors import StrictModeError
from promptsmith.events import BuildEvent, BuildEventType
from promptsmith.extensions import log
from promptsmith.macros import MacroEnvironment, MacroProcessor
from promptsmith.models import Block, LoreBook, Plan, TrimReport
from promptsmith.utils.tokenizers import TokenEstimator
from promptsmith.utils.utils import message_texts

if TYPE_CHECKING:
    from promptsmith.dto import CharacterDTO, MessageDTO, PresetDTO, UserDTO
    from promptsmith.lore.engine import LoreScanResult


@dataclass
class BuildContext:
    """
    Per-build state shared by the pipeline stages. Inputs (character, user,
    history, preset, lore books) are read-only to stages; stages append
    blocks, warnings and results.
    """
    character: Optional['CharacterDTO'] = None
    user: Optional['UserDTO'] = None
    history: List['MessageDTO'] = field(default_factory=list)
    user_message: Optional[str] = None
    preset: Optional['PresetDTO'] = None
    lore_books: List[LoreBook] = field(default_factory=list)
    turn_count: Optional[int] = None
    timed_state: Optional[Dict[str, Dict[str, Any]]] = None
    token_estimator: Optional[TokenEstimator] = None
    macro_processor: Optional[MacroProcessor] = None

    blocks: List[Block] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    instrumenter: Optional[Callable[[BuildEvent], None]] = None
    lore_result: Optional['LoreScanResult'] = None
    trim_report: Optional[TrimReport] = None
    current_stage: Optional[str] = None
    plan: Optional[Plan] = None
    failed: bool = False
    strict: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    _block_counters: Dict[str, int] = field(default_factory=dict, repr=False)

    def instrument(self, event_type: BuildEventType, data: Any = None, stage: Optional[str] = None) -> None:
        event = BuildEvent(event_type, stage=stage or self.current_stage, data=data)
        event.handle()
        if self.instrumenter is not None:
            self.instrumenter(event)

    def warn(self, message: str) -> None:
        if self.strict:
            raise StrictModeError(message, stage=self.current_stage)
        log.warning(message)
        self.warnings.append(message)
        self.instrument(BuildEventType.WARNING, message)

    def stat(self, **stats) -> None:
        self.instrument(BuildEventType.STAT, stats)

    def _assign_id(self, block: Block) -> Block:
        if block.id:
            return block
        count = self._block_counters.get(block.slot, 0)
        self._block_counters[block.slot] = count + 1
        return block.with_id(f'{block.slot}_{count}')

    def add_block(self, block: Block) -> Block:
        block = self._assign_id(block)
        self.blocks.append(block)
        return block

    def insert_blocks(self, index: int, blocks: Sequence[Block]) -> List[Block]:
        inserted = [self._assign_id(block) for block in blocks]
        self.blocks[index:index] = inserted
        return inserted

    def block_indices(self, slot: str) -> List[int]:
        return [index for index, block in enumerate(self.blocks) if block.slot == slot]

    def environment(self) -> MacroEnvironment:
        character = self.character
        user = self.user
        texts = message_texts(self.history)
        last_message = self.user_message or (texts[-1] if texts else '')
        return MacroEnvironment(
            char=getattr(character, 'name', '') or '',
            user=getattr(user, 'name', '') or '',
            persona=getattr(user, 'persona', '') or '',
            description=getattr(character, 'description', '') or '',
            personality=getattr(character, 'personality', '') or '',
            scenario=getattr(character, 'scenario', '') or '',
            last_message=last_message,
            turn=self.turn_count or 0,
            variables=dict(self.metadata.get('variables', {})),
        )

    def expand(self, text: Optional[str]) -> str:
        if not text:
            return ''
        if self.macro_processor is None:
            return text
        return self.macro_processor.expand(text, self.environment())
