"""Maps free-form input categories onto the fixed taxonomy."""

from typing import Optional

from transaction_importer.models.category import StandardCategory, coerce_category, keyword_category
from transaction_importer.models.transaction import ExtractedTransaction
from transaction_importer.processing.ai.client import InferenceService, request_json
from transaction_importer.processing.ai.models import AIUsageStats, Parsed
from transaction_importer.processing.ai.prompts import (
    STANDARDIZATION_SYSTEM_PROMPT,
    build_standardization_prompt,
)
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


def distinct_raw_categories(transactions: list[ExtractedTransaction]) -> list[str]:
    """Collect distinct non-empty raw category labels in first-seen order.

    Args:
        transactions: Extracted transactions.

    Returns:
        Distinct labels, whitespace-trimmed.
    """
    seen: dict[str, None] = {}
    for txn in transactions:
        if txn.raw_category and txn.raw_category.strip():
            seen.setdefault(txn.raw_category.strip(), None)
    return list(seen)


def keyword_mapping(labels: list[str]) -> dict[str, StandardCategory]:
    """Map labels with the keyword table alone."""
    return {label: keyword_category(label) for label in labels}


class CategoryStandardizer:
    """Standardizes raw category labels with one batched inference request.

    If the response has no usable JSON object, every label is mapped with the
    keyword table. If the object is usable but skips a label, or answers with
    something outside the taxonomy, only that label goes through the table.
    The resulting mapping always covers every label.
    """

    def __init__(
        self,
        inference: Optional[InferenceService] = None,
        usage_stats: Optional[AIUsageStats] = None,
    ):
        """Initialize category standardizer.

        Args:
            inference: Inference service. If None, only the keyword table is used.
            usage_stats: Optional stats that count malformed responses.
        """
        self.inference = inference
        self.usage_stats = usage_stats
        self.used_fallback = False

    async def build_mapping(self, labels: list[str]) -> dict[str, StandardCategory]:
        """Map each distinct label to a taxonomy category.

        Args:
            labels: Distinct raw labels.

        Returns:
            Total mapping from label to category.
        """
        self.used_fallback = False
        if not labels:
            return {}

        if self.inference is None:
            self.used_fallback = True
            return keyword_mapping(labels)

        result = await request_json(
            self.inference,
            STANDARDIZATION_SYSTEM_PROMPT,
            build_standardization_prompt(labels),
            self.usage_stats,
        )

        if not isinstance(result, Parsed) or not isinstance(result.value, dict):
            reason = result.reason if not isinstance(result, Parsed) else "expected a JSON object"
            logger.warning(f"Category standardization response unusable ({reason}); using keyword table")
            self.used_fallback = True
            return keyword_mapping(labels)

        response = {str(k).strip().casefold(): v for k, v in result.value.items()}
        mapping: dict[str, StandardCategory] = {}
        for label in labels:
            category = coerce_category(response.get(label.casefold()))
            if category is None:
                logger.debug(f"No valid standard category for {label!r} in response; using keyword table")
                category = keyword_category(label)
            mapping[label] = category
        return mapping

    async def standardize(self, transactions: list[ExtractedTransaction]) -> dict[str, StandardCategory]:
        """Assign taxonomy categories to transactions that carry a raw category.

        A no-op when no transaction has a raw category.

        Args:
            transactions: Extracted transactions, updated in place.

        Returns:
            The mapping that was applied.
        """
        labels = distinct_raw_categories(transactions)
        if not labels:
            logger.debug("No input categories to standardize")
            return {}

        logger.info(f"Standardizing {len(labels)} distinct input categories")
        mapping = await self.build_mapping(labels)

        applied = 0
        for txn in transactions:
            if txn.raw_category is None:
                continue
            category = mapping.get(txn.raw_category.strip())
            if category is not None:
                txn.assign_category(category, "input")
                applied += 1

        logger.info(f"Applied standardized categories to {applied} transactions")
        return mapping
