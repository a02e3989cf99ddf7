"""Scripted inference service for tests."""

import json
import re
from typing import Callable, Optional, Union

from transaction_importer.models.category import keyword_category
from transaction_importer.processing.ai.prompts import (
    CATEGORIZATION_SYSTEM_PROMPT,
    COLUMN_MAPPING_SYSTEM_PROMPT,
    STANDARDIZATION_SYSTEM_PROMPT,
)

Response = Union[str, BaseException]

_BATCH_LINE = re.compile(r'^\d+\. (".*?(?<!\\)") \| ', re.MULTILINE)
_SINGLE_MERCHANT = re.compile(r"^- Merchant: (.*)$", re.MULTILINE)
_LABEL_LINE = re.compile(r'^- (".*")$', re.MULTILINE)


def batch_merchants(user_prompt: str) -> list[str]:
    """Merchants listed in a batch categorization prompt, in order."""
    return [json.loads(m) for m in _BATCH_LINE.findall(user_prompt)]


def single_merchant(user_prompt: str) -> Optional[str]:
    """Merchant named in a single-transaction prompt."""
    match = _SINGLE_MERCHANT.search(user_prompt)
    return match.group(1) if match else None


def standardization_labels(user_prompt: str) -> list[str]:
    """Labels listed in a standardization prompt."""
    return [json.loads(m) for m in _LABEL_LINE.findall(user_prompt)]


class FakeInferenceService:
    """Inference service that records prompts and replays canned answers.

    Answers come from ``handler`` when given, otherwise from the queued
    ``responses`` in order. A queued exception is raised instead of returned.
    """

    def __init__(
        self,
        responses: Optional[list[Response]] = None,
        handler: Optional[Callable[[str, str], Response]] = None,
    ):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.handler is not None:
            answer = self.handler(system_prompt, user_prompt)
        elif self.responses:
            answer = self.responses.pop(0)
        else:
            answer = "I have no answer."
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def prompts_for(self, system_prompt: str) -> list[str]:
        """User prompts sent with the given system prompt."""
        return [user for system, user in self.calls if system == system_prompt]

    @property
    def batch_prompts(self) -> list[str]:
        return [
            p for p in self.prompts_for(CATEGORIZATION_SYSTEM_PROMPT)
            if p.startswith("Categorize each of these")
        ]

    @property
    def single_prompts(self) -> list[str]:
        return [
            p for p in self.prompts_for(CATEGORIZATION_SYSTEM_PROMPT)
            if p.startswith("Categorize this transaction")
        ]


def rule_based_handler(
    merchant_categories: Optional[dict[str, str]] = None,
    label_categories: Optional[dict[str, str]] = None,
    column_roles: Optional[dict[str, Optional[str]]] = None,
) -> Callable[[str, str], str]:
    """Build a handler that answers every prompt type from lookup tables.

    Unknown merchants and labels get the keyword table's answer, wrapped in
    a little prose the way real models answer.
    """
    merchant_categories = merchant_categories or {}
    label_categories = label_categories or {}

    def lookup_merchant(merchant: str) -> str:
        return merchant_categories.get(merchant, keyword_category(merchant).value)

    def handler(system_prompt: str, user_prompt: str) -> str:
        if system_prompt == COLUMN_MAPPING_SYSTEM_PROMPT:
            return json.dumps(column_roles or {})
        if system_prompt == STANDARDIZATION_SYSTEM_PROMPT:
            labels = standardization_labels(user_prompt)
            answer = {
                label: label_categories.get(label, keyword_category(label).value)
                for label in labels
            }
            return f"Here is the mapping:\n{json.dumps(answer)}"
        if system_prompt == CATEGORIZATION_SYSTEM_PROMPT:
            if user_prompt.startswith("Categorize each of these"):
                answer = [lookup_merchant(m) for m in batch_merchants(user_prompt)]
                return f"```json\n{json.dumps(answer)}\n```"
            merchant = single_merchant(user_prompt) or ""
            return json.dumps({"category": lookup_merchant(merchant)})
        return "Unrecognized request."

    return handler
