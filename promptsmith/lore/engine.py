from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from promptsmith.config import BuilderConfig
from promptsmith.constants import BudgetGroup, MessageRole, Slot
from promptsmith.macros import MacroEnvironment, MacroProcessor, create_macro_processor
from promptsmith.models import Block, LoreBook, LoreEntry
from promptsmith.utils.tokenizers import HeuristicEstimator, TokenEstimator
from promptsmith.utils.utils import create_logger, message_texts, resolve_log_level
from .matcher import first_match, match_secondary
from .timed_effects import TimedEffects, TimedState

lore_log = create_logger(__name__, entity_name='LORE', level=resolve_log_level(BuilderConfig.LOG_LEVEL))


@dataclass
class ScanEntry:
    entry: LoreEntry
    book_index: int
    position: int

    @property
    def id(self) -> str:
        return self.entry.id


@dataclass
class LoreScanResult:
    activated_entries: List[LoreEntry] = field(default_factory=list)
    blocks: List[Block] = field(default_factory=list)
    total_tokens: int = 0
    budget_tokens: Optional[int] = None
    matched_ids: List[str] = field(default_factory=list)
    sticky_ids: List[str] = field(default_factory=list)
    dropped_ids: List[str] = field(default_factory=list)
    passes: int = 0

    @property
    def budget_overflowed(self) -> bool:
        return bool(self.dropped_ids)

    @property
    def activated_ids(self) -> List[str]:
        return [entry.id for entry in self.activated_entries]


def book_label(book: LoreBook, book_index: int) -> str:
    name = (book.name or '').strip()
    return name if name else f'book{book_index}'


def namespaced_entry(entry: LoreEntry, book: LoreBook, book_index: int, entry_index: int) -> LoreEntry:
    """
    Entry ids are unique across books as '<book>.<uid>'. Ids that already
    contain a dot are taken as namespaced.
    """
    uid = (entry.id or '').strip() or str(entry_index)
    if '.' in uid:
        return entry if entry.id == uid else replace(entry, id=uid)
    return replace(entry, id=f'{book_label(book, book_index)}.{uid}')


def resolve_budget(books: Sequence[LoreBook], budget_tokens: Optional[int]) -> Optional[int]:
    if budget_tokens is not None:
        return max(int(budget_tokens), 0)
    budgets = [book.token_budget for book in books if book.token_budget and book.token_budget > 0]
    return min(budgets) if budgets else None


class LoreEngine:
    """
    Decides which lore entries activate for the current turn.

    Scanning runs in passes: the first pass matches keys against the trailing
    `scan_depth` messages of each book; books with recursive scanning then
    see the content of entries activated in earlier passes, until a pass
    activates nothing new. An entry activates at most once per scan and the
    pass count never exceeds the number of entries, so cyclic references
    terminate. A book's `max_recursion_steps` caps the passes its entries
    take part in. Entries with `prevent_recursion` never feed the recursion
    buffer; entries with `exclude_recursion` only match the base corpus.

    Selection is greedy by ascending insertion order: entries are accepted
    while the running cost stays within budget and everything from the first
    overflowing entry on is dropped.
    """

    def __init__(self, token_estimator: Optional[TokenEstimator] = None,
                 macro_processor: Optional[MacroProcessor] = None):
        self.token_estimator = token_estimator or HeuristicEstimator()
        self.macro_processor = macro_processor or create_macro_processor()

    def scan(self, transcript_window: Iterable, books: Sequence[LoreBook], budget_tokens: Optional[int] = None,
             turn_count: int = 0, timed_state: Optional[TimedState] = None,
             environment: Optional[MacroEnvironment] = None,
             expand: Optional[Callable[[str], str]] = None) -> LoreScanResult:
        books = [book for book in books or [] if book is not None]
        messages = message_texts(transcript_window)
        budget = resolve_budget(books, budget_tokens)
        result = LoreScanResult(budget_tokens=budget)

        scan_entries = self._build_entries(books)
        if not scan_entries:
            return result

        timed_effects = TimedEffects(
            turn_count=turn_count,
            entries=[se.entry for se in scan_entries],
            timed_state=timed_state,
        ).check()

        eligible = [se for se in scan_entries if self._eligible(se, timed_effects)]

        base_corpus = {index: self._base_corpus(messages, book.scan_depth) for index, book in enumerate(books)}
        recursion_buffer: List[str] = []

        activated: Dict[str, ScanEntry] = {}
        matched: List[ScanEntry] = []

        for se in eligible:
            if se.entry.constant:
                activated[se.id] = se

        pending = [se for se in eligible if not se.entry.constant]
        max_passes = max(len(pending), 1)
        while pending and result.passes < max_passes:
            pending = [se for se in pending if self._within_steps(books[se.book_index], result.passes)]
            if not pending:
                break
            result.passes += 1
            newly_matched = []
            for se in pending:
                book = books[se.book_index]
                corpus = base_corpus[se.book_index]
                if book.recursive_scanning and recursion_buffer:
                    corpus = '\n'.join([corpus] + recursion_buffer) if corpus else '\n'.join(recursion_buffer)
                if self._matches(se.entry, corpus):
                    newly_matched.append(se)

            if not newly_matched:
                break

            for se in newly_matched:
                activated[se.id] = se
                matched.append(se)
                lore_log.debug(f"Entry '{se.id}' matched on pass {result.passes}")

            # exclude_recursion entries only ever match the base corpus
            matched_ids = {se.id for se in newly_matched}
            pending = [
                se for se in pending
                if se.id not in matched_ids
                and books[se.book_index].recursive_scanning
                and not se.entry.exclude_recursion
            ]
            recursion_buffer.extend(
                se.entry.content for se in newly_matched
                if se.entry.content and not se.entry.prevent_recursion
            )

        for se in eligible:
            if se.id not in activated and timed_effects.sticky_active(se.id):
                activated[se.id] = se
                result.sticky_ids.append(se.id)

        candidates = sorted(activated.values(), key=lambda se: (se.entry.insertion_order, se.position))
        self._select_within_budget(candidates, budget, result, environment, expand)

        result.matched_ids = [se.id for se in matched]
        timed_effects.record(se.entry for se in matched)

        lore_log.info(
            f"Lore scan at turn {turn_count}: {len(result.activated_entries)} activated, "
            f"{len(result.dropped_ids)} dropped by budget, {result.total_tokens} tokens"
        )
        return result

    def _build_entries(self, books: Sequence[LoreBook]) -> List[ScanEntry]:
        scan_entries = []
        for book_index, book in enumerate(books):
            for entry_index, entry in enumerate(book.entries):
                if not entry.enabled:
                    continue
                scan_entries.append(ScanEntry(
                    entry=namespaced_entry(entry, book, book_index, entry_index),
                    book_index=book_index,
                    position=len(scan_entries),
                ))
        return scan_entries

    def _eligible(self, se: ScanEntry, timed_effects: TimedEffects) -> bool:
        if timed_effects.delay_active(se.entry):
            return False
        if timed_effects.cooldown_active(se.id):
            lore_log.debug(f"Entry '{se.id}' suppressed by cooldown")
            return False
        return True

    @staticmethod
    def _within_steps(book: LoreBook, passes_done: int) -> bool:
        return not book.max_recursion_steps or passes_done < book.max_recursion_steps

    @staticmethod
    def _base_corpus(messages: List[str], scan_depth: int) -> str:
        if scan_depth <= 0:
            return ''
        return '\n'.join(message for message in messages[-scan_depth:] if message)

    def _matches(self, entry: LoreEntry, corpus: str) -> bool:
        if not corpus:
            return False
        options = {
            'case_sensitive': entry.case_sensitive,
            'match_whole_words': entry.match_whole_words,
            'use_regex': entry.use_regex,
        }
        if first_match(corpus, entry.keys, **options) is None:
            return False
        if entry.selective and any(key.strip() for key in entry.secondary_keys):
            return match_secondary(corpus, entry.secondary_keys, entry.selective_logic, **options)
        return True

    def _select_within_budget(self, candidates: List[ScanEntry], budget: Optional[int], result: LoreScanResult,
                              environment: Optional[MacroEnvironment],
                              expand: Optional[Callable[[str], str]]) -> None:
        for index, se in enumerate(candidates):
            content = expand(se.entry.content) if expand else self.macro_processor.expand(se.entry.content, environment)
            cost = self.token_estimator.estimate(content)

            if budget is not None and result.total_tokens + cost > budget:
                result.dropped_ids.extend(dropped.id for dropped in candidates[index:])
                lore_log.info(f"Lore budget {budget} reached at entry '{se.id}', dropping {len(candidates) - index} entries")
                return

            result.total_tokens += cost
            result.activated_entries.append(se.entry)
            result.blocks.append(Block(
                role=MessageRole.SYSTEM,
                content=content,
                slot=Slot.LOREBOOK,
                budget_group=BudgetGroup.LOREBOOK,
                removable=True,
                priority_order=se.entry.insertion_order,
                metadata={
                    'source': 'lore',
                    'entry_id': se.id,
                    'position': se.entry.position,
                    'sticky': se.id in result.sticky_ids,
                    'tokens': cost,
                },
                id=f'lore:{se.id}',
            ))


def scan(transcript_window: Iterable, books: Sequence[LoreBook], budget_tokens: Optional[int] = None,
         turn_count: int = 0, timed_state: Optional[TimedState] = None,
         token_estimator: Optional[TokenEstimator] = None,
         macro_processor: Optional[MacroProcessor] = None,
         environment: Optional[MacroEnvironment] = None) -> LoreScanResult:
    engine = LoreEngine(token_estimator=token_estimator, macro_processor=macro_processor)
    return engine.scan(transcript_window, books, budget_tokens=budget_tokens, turn_count=turn_count,
                       timed_state=timed_state, environment=environment)
