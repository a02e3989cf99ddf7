"""Column role detection for statement files with unknown layouts.

Detection runs in two phases. A heuristic pass matches lowercased headers
against per-role synonym lists. Only if an essential role is still missing,
the inference service is shown the headers and a sample row and asked for
the rest. The model can fill gaps but never overrides a heuristic match.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from transaction_importer.parsers.base import MissingEssentialColumns
from transaction_importer.processing.ai.client import (
    InferenceService,
    MalformedInferenceResponse,
    request_json,
)
from transaction_importer.processing.ai.models import AIUsageStats, ColumnMappingSuggestion, Parsed
from transaction_importer.processing.ai.prompts import (
    COLUMN_MAPPING_SYSTEM_PROMPT,
    COLUMN_ROLES,
    build_column_mapping_prompt,
)
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Synonyms per role, tested as substrings of the lowercased header.
# A header claims at most one role; roles are tried in this order so that
# "Debit Amount" becomes debit rather than amount, and "Value Date" a date.
HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "date": ("date", "posted", "transaction date"),
    "debit": ("debit", "withdrawal"),
    "credit": ("credit", "deposit"),
    "amount": ("amount", "total", "value"),
    "merchant": ("description", "merchant", "payee", "vendor", "details"),
    "category": ("category", "type"),
}


@dataclass
class ColumnMapping:
    """Resolved column index for each logical role.

    Attributes:
        headers: Header row the indices refer to.
        date: Date column index.
        amount: Signed amount column index.
        debit: Debit (outflow) column index.
        credit: Credit (inflow) column index.
        merchant: Merchant/description column index.
        category: Category column index.
        ai_roles: Roles filled in by the inference service.
    """

    headers: list[str]
    date: Optional[int] = None
    amount: Optional[int] = None
    debit: Optional[int] = None
    credit: Optional[int] = None
    merchant: Optional[int] = None
    category: Optional[int] = None
    ai_roles: list[str] = field(default_factory=list)

    def get(self, role: str) -> Optional[int]:
        """Return the column index assigned to a role."""
        return getattr(self, role)

    def assign(self, role: str, index: int) -> bool:
        """Assign a column to a role unless the role is already taken.

        Args:
            role: Role name.
            index: Column index.

        Returns:
            True if the assignment was made.
        """
        if role not in COLUMN_ROLES:
            raise ValueError(f"Unknown column role: {role}")
        if self.get(role) is not None:
            return False
        setattr(self, role, index)
        return True

    def header_for(self, role: str) -> Optional[str]:
        """Header name of the column assigned to a role."""
        idx = self.get(role)
        return self.headers[idx] if idx is not None else None

    @property
    def assigned_indices(self) -> set[int]:
        """Column indices that already hold a role."""
        return {idx for idx in (self.get(role) for role in COLUMN_ROLES) if idx is not None}

    @property
    def has_amount(self) -> bool:
        """Whether a signed amount, or both debit and credit, are resolved."""
        return self.amount is not None or (self.debit is not None and self.credit is not None)

    def missing_essential_roles(self) -> list[str]:
        """Essential roles that are not resolved yet."""
        missing = []
        if self.date is None:
            missing.append("date")
        if self.merchant is None:
            missing.append("merchant")
        if not self.has_amount:
            missing.append("amount (or debit and credit)")
        return missing

    @property
    def is_complete(self) -> bool:
        """Whether every essential role is resolved."""
        return not self.missing_essential_roles()

    def describe(self) -> str:
        """Short role -> header summary for logging."""
        parts = [
            f"{role}={self.header_for(role)!r}"
            for role in COLUMN_ROLES
            if self.get(role) is not None
        ]
        return ", ".join(parts)


def map_columns_heuristic(headers: list[str]) -> ColumnMapping:
    """Assign roles from header synonyms.

    The first header in file order that matches a role wins it.

    Args:
        headers: Header cells in file order.

    Returns:
        ColumnMapping with whatever roles matched (possibly incomplete).
    """
    mapping = ColumnMapping(headers=list(headers))

    for idx, header in enumerate(headers):
        header_lower = header.strip().lower()
        if not header_lower:
            continue
        for role, synonyms in HEADER_SYNONYMS.items():
            if mapping.get(role) is not None:
                continue
            if any(syn in header_lower for syn in synonyms):
                mapping.assign(role, idx)
                break

    return mapping


def validate_suggestion(data: object, headers: list[str]) -> ColumnMappingSuggestion:
    """Keep only model-proposed roles that name a real header.

    Header names are compared after trimming and case-folding. A bare
    column index (int or digit string) inside the header range is accepted.

    Args:
        data: Decoded JSON from the model.
        headers: Actual header row.

    Returns:
        The validated suggestion.
    """
    suggestion = ColumnMappingSuggestion()
    if not isinstance(data, dict):
        return suggestion

    by_name = {}
    for header in headers:
        by_name.setdefault(header.strip().casefold(), header)

    for role in COLUMN_ROLES:
        value = data.get(role)
        if value is None or value == "" or (isinstance(value, str) and value.lower() == "null"):
            continue
        if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < len(headers):
            suggestion.roles[role] = headers[value]
            continue
        if isinstance(value, str):
            match = by_name.get(value.strip().casefold())
            if match is None and value.strip().isdigit() and int(value.strip()) < len(headers):
                match = headers[int(value.strip())]
            if match is not None:
                suggestion.roles[role] = match
                continue
        suggestion.rejected[role] = str(value)

    return suggestion


class ColumnMapper:
    """Resolves a ColumnMapping for a file, consulting the model only for gaps."""

    def __init__(
        self,
        inference: Optional[InferenceService] = None,
        usage_stats: Optional[AIUsageStats] = None,
    ):
        """Initialize column mapper.

        Args:
            inference: Inference service for the gap-filling pass.
                If None, only the heuristic pass runs.
            usage_stats: Optional stats that count malformed responses.
        """
        self.inference = inference
        self.usage_stats = usage_stats

    async def resolve(
        self,
        headers: list[str],
        sample_row: Optional[list[str]],
        file_path: Optional[Path] = None,
    ) -> ColumnMapping:
        """Resolve column roles for a file.

        Args:
            headers: Header cells in file order.
            sample_row: One data row for context.
            file_path: Source file, for messages.

        Returns:
            A complete ColumnMapping.

        Raises:
            MissingEssentialColumns: If essential roles stay unresolved.
        """
        mapping = map_columns_heuristic(headers)
        if mapping.is_complete:
            logger.debug(f"Heuristic column mapping: {mapping.describe()}")
            return mapping

        logger.info(
            f"Heuristic mapping incomplete (missing {', '.join(mapping.missing_essential_roles())}); "
            "asking inference service"
        )

        if self.inference is not None:
            try:
                await self._fill_gaps(mapping, sample_row)
            except MalformedInferenceResponse as e:
                logger.warning(f"Column mapping response unusable: {e}")
                raise MissingEssentialColumns(
                    mapping.missing_essential_roles(), headers, file_path
                ) from e

        missing = mapping.missing_essential_roles()
        if missing:
            raise MissingEssentialColumns(missing, headers, file_path)

        logger.info(f"Column mapping after AI pass: {mapping.describe()}")
        return mapping

    async def _fill_gaps(self, mapping: ColumnMapping, sample_row: Optional[list[str]]) -> None:
        result = await request_json(
            self.inference,
            COLUMN_MAPPING_SYSTEM_PROMPT,
            build_column_mapping_prompt(mapping.headers, sample_row),
            self.usage_stats,
        )
        if not isinstance(result, Parsed):
            raise MalformedInferenceResponse(result.reason or "no JSON in response", result.raw_text)

        suggestion = validate_suggestion(result.value, mapping.headers)
        for role, value in suggestion.rejected.items():
            logger.warning(f"Ignoring AI column for {role}: {value!r} is not a header")

        taken = mapping.assigned_indices
        for role, header in suggestion.roles.items():
            if mapping.get(role) is not None:
                continue
            idx = mapping.headers.index(header)
            if idx in taken:
                logger.debug(f"Ignoring AI column for {role}: {header!r} already holds a role")
                continue
            mapping.assign(role, idx)
            mapping.ai_roles.append(role)
            taken.add(idx)
