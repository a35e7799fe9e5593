import io
import math
from typing import Optional, Protocol

import tiktoken
from tokenizers import Tokenizer

from promptsmith.extensions import log
from promptsmith.constants import CLAUDE3_MODEL_GROUP, GPT4_MODEL_GROUP, HEURISTIC_MODEL_GROUP, TOKENIZERS_PATH


class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int:
        ...


class HeuristicEstimator:
    """
    Model-agnostic estimate: one token per `chars_per_token` characters.
    """

    def __init__(self, chars_per_token: float = 4.0):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)


class TiktokenEstimator:
    def __init__(self, model: str = GPT4_MODEL_GROUP, fallback_encoding: str = 'cl100k_base'):
        self.model = model
        self.fallback_encoding = fallback_encoding
        self._encoding = None

    @property
    def encoding(self):
        if self._encoding is None:
            try:
                self._encoding = tiktoken.encoding_for_model(self.model)
            except KeyError:
                log.warning(f"No tiktoken encoding registered for '{self.model}', using {self.fallback_encoding}")
                self._encoding = tiktoken.get_encoding(self.fallback_encoding)
        return self._encoding

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encoding.encode(text, disallowed_special=()))


class HFTokenizerEstimator:
    def __init__(self, tokenizer: Tokenizer):
        self.tokenizer = tokenizer

    @classmethod
    def from_file(cls, path: str) -> 'HFTokenizerEstimator':
        with io.open(path, mode="r", encoding="utf-8") as f:
            return cls(Tokenizer.from_str(f.read()))

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return len(self.tokenizer.encode(text).ids)


def get_token_estimator(model_group: Optional[str]) -> TokenEstimator:
    """
    Retrieves the token estimator for the specified model group.
    Unknown groups and missing tokenizer files fall back to the heuristic estimator.
    """
    if not model_group or model_group == HEURISTIC_MODEL_GROUP:
        return HeuristicEstimator()

    if model_group == CLAUDE3_MODEL_GROUP:
        path = f'{TOKENIZERS_PATH}/{model_group}_tokenizer.json'
        try:
            return HFTokenizerEstimator.from_file(path)
        except IOError as e:
            log.error(f"Error loading tokenizer for {model_group}: {e}")
            return HeuristicEstimator()

    if GPT4_MODEL_GROUP in model_group or model_group.startswith('gpt-'):
        return TiktokenEstimator(model_group)

    log.warning(f"Unknown model group: {model_group}, using heuristic token estimation")
    return HeuristicEstimator()
