"""Batched transaction categorization backed by a run-scoped merchant cache."""

import asyncio
import re
from typing import Callable, Optional

from transaction_importer.models.category import StandardCategory, coerce_category, keyword_category
from transaction_importer.models.report import CategorizationStats
from transaction_importer.models.transaction import ExtractedTransaction
from transaction_importer.processing.ai.client import InferenceService, request_json
from transaction_importer.processing.ai.models import AIUsageStats, Parsed
from transaction_importer.processing.ai.prompts import (
    CATEGORIZATION_SYSTEM_PROMPT,
    build_batch_categorization_prompt,
    build_categorization_prompt,
)
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10


class MerchantCategoryCache:
    """Merchant -> category mapping that lives for one pipeline run.

    Keys are merchants with case and repeated whitespace normalized, so
    "Amazon" and "AMAZON" share an entry.
    """

    def __init__(self) -> None:
        self._entries: dict[str, StandardCategory] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(merchant: str) -> str:
        return re.sub(r"\s+", " ", merchant.strip()).casefold()

    def get(self, merchant: str) -> Optional[StandardCategory]:
        """Look up a merchant, counting the hit or miss."""
        category = self._entries.get(self._key(merchant))
        if category is None:
            self.misses += 1
        else:
            self.hits += 1
        return category

    def put(self, merchant: str, category: StandardCategory) -> None:
        """Record the category for a merchant."""
        self._entries[self._key(merchant)] = category

    def __contains__(self, merchant: object) -> bool:
        return isinstance(merchant, str) and self._key(merchant) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()


def _label_from_item(item: object) -> object:
    if isinstance(item, dict):
        return item.get("category", item.get("category_id"))
    return item


class Categorizer:
    """Assigns taxonomy categories to transactions that still lack one.

    Transactions are processed in fixed-size batches, sequentially. Within a
    batch, cached merchants are assigned directly; the rest go out in one
    batched request expecting a JSON array of categories in input order. A
    response of the wrong shape or length sends every uncached transaction
    in that batch through single-transaction requests, dispatched
    concurrently. The cache is only updated once a batch is finished, so a
    merchant repeated inside one batch is classified for each occurrence.

    Attributes:
        inference: Inference service; None means keyword table only.
        cache: Run-scoped merchant cache.
        batch_size: Transactions per batch.
        stats: Counters for this categorizer.
        progress: Fraction of batches completed, in [0, 1].
    """

    def __init__(
        self,
        cache: MerchantCategoryCache,
        inference: Optional[InferenceService] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        usage_stats: Optional[AIUsageStats] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        checkpoint: Optional[Callable[[], None]] = None,
    ):
        """Initialize categorizer.

        Args:
            cache: Merchant cache owned by the current run.
            inference: Inference service for classification.
            batch_size: Transactions per batch.
            usage_stats: Optional stats that count malformed responses.
            on_progress: Called with the new progress after each batch.
            checkpoint: Called before each batch; may raise to stop the run.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.cache = cache
        self.inference = inference
        self.batch_size = batch_size
        self.usage_stats = usage_stats
        self.on_progress = on_progress
        self.checkpoint = checkpoint
        self.stats = CategorizationStats()
        self.progress = 0.0

    def _set_progress(self, value: float) -> None:
        value = min(1.0, max(self.progress, value))
        self.progress = value
        if self.on_progress is not None:
            self.on_progress(value)

    async def categorize(self, transactions: list[ExtractedTransaction]) -> CategorizationStats:
        """Categorize every transaction whose category is unresolved.

        Args:
            transactions: Transactions, updated in place. Already categorized
                ones are left alone.

        Returns:
            Counters for this call.
        """
        pending = [t for t in transactions if t.category is None]
        self.stats.total += len(pending)

        if not pending:
            self._set_progress(1.0)
            return self.stats

        batches = [
            pending[start : start + self.batch_size]
            for start in range(0, len(pending), self.batch_size)
        ]
        logger.info(f"Categorizing {len(pending)} transactions in {len(batches)} batches")

        for batch_num, batch in enumerate(batches, start=1):
            if self.checkpoint is not None:
                self.checkpoint()
            await self._categorize_batch(batch)
            self.stats.batches += 1
            self._set_progress(batch_num / len(batches))

        logger.info(
            f"Categorization complete: {self.stats.cache_hits} from cache, "
            f"{self.stats.batch_assigned} batched, {self.stats.per_item_assigned} single, "
            f"{self.stats.keyword_fallbacks} keyword fallbacks"
        )
        return self.stats

    async def _categorize_batch(self, batch: list[ExtractedTransaction]) -> None:
        ai_bound: list[ExtractedTransaction] = []
        for txn in batch:
            cached = self.cache.get(txn.merchant)
            if cached is not None:
                txn.assign_category(cached, "cache")
                self.stats.cache_hits += 1
            else:
                ai_bound.append(txn)

        if ai_bound:
            labels = await self._classify_batch(ai_bound)
            if labels is None:
                self.stats.batch_fallbacks += 1
                await self._classify_each(ai_bound)
            else:
                for txn, label in zip(ai_bound, labels):
                    category = coerce_category(label)
                    if category is None:
                        logger.debug(f"Batch label {label!r} for {txn.merchant!r} is not a category")
                        txn.assign_category(keyword_category(txn.merchant), "fallback")
                        self.stats.keyword_fallbacks += 1
                    else:
                        txn.assign_category(category, "ai")
                        self.stats.batch_assigned += 1

        for txn in batch:
            if txn.category is not None and txn.category_source != "cache":
                self.cache.put(txn.merchant, txn.category)

    async def _classify_batch(self, items: list[ExtractedTransaction]) -> Optional[list[object]]:
        """Ask for one category per item; None if the answer is unusable."""
        if self.inference is None:
            return None

        result = await request_json(
            self.inference,
            CATEGORIZATION_SYSTEM_PROMPT,
            build_batch_categorization_prompt([(t.merchant, t.amount) for t in items]),
            self.usage_stats,
        )
        if not isinstance(result, Parsed):
            logger.warning(f"Batch categorization response unusable ({result.reason}); classifying individually")
            return None

        value = result.value
        if isinstance(value, dict):
            for key in ("categories", "results"):
                if isinstance(value.get(key), list):
                    value = value[key]
                    break
        if not isinstance(value, list):
            logger.warning("Batch categorization response is not an array; classifying individually")
            return None
        if len(value) != len(items):
            logger.warning(
                f"Batch categorization returned {len(value)} categories for {len(items)} "
                "transactions; classifying individually"
            )
            return None

        return [_label_from_item(item) for item in value]

    async def _classify_each(self, items: list[ExtractedTransaction]) -> None:
        categories = await asyncio.gather(*(self._classify_one(t) for t in items))
        for txn, (category, source) in zip(items, categories):
            txn.assign_category(category, source)
            if source == "ai":
                self.stats.per_item_assigned += 1
            else:
                self.stats.keyword_fallbacks += 1

    async def _classify_one(self, txn: ExtractedTransaction) -> tuple[StandardCategory, str]:
        if self.inference is not None:
            result = await request_json(
                self.inference,
                CATEGORIZATION_SYSTEM_PROMPT,
                build_categorization_prompt(txn.merchant, txn.amount),
                self.usage_stats,
            )
            if isinstance(result, Parsed):
                value = result.value
                if isinstance(value, list) and len(value) == 1:
                    value = value[0]
                category = coerce_category(_label_from_item(value))
                if category is not None:
                    return category, "ai"
            logger.debug(f"No usable category for {txn.merchant!r}; using keyword table")

        return keyword_category(txn.merchant), "fallback"
