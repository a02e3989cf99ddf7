"""Prompt templates for column mapping, category standardization and classification."""

import json
from decimal import Decimal
from typing import Optional

from transaction_importer.models.category import TAXONOMY_LABELS

_TAXONOMY_LIST = "\n".join(f"- {label}" for label in TAXONOMY_LABELS)

JSON_ONLY = "Response format: Raw JSON only - no markdown code blocks, no explanation outside the JSON."

# Column roles the mapper asks the model about
COLUMN_ROLES = ("date", "amount", "debit", "credit", "merchant", "category")


COLUMN_MAPPING_SYSTEM_PROMPT = f"""You identify the columns of bank and credit card \
statement exports. Given the header row and one sample data row, decide which header \
holds each role.

Roles:
- date: the transaction or posting date
- amount: a single signed amount column
- debit: money out, when debits and credits are separate columns
- credit: money in, when debits and credits are separate columns
- merchant: the payee, merchant or transaction description
- category: a spending category or transaction type assigned by the bank

Use the exact header text. Use null for roles the file does not have.

{JSON_ONLY}"""


def build_column_mapping_prompt(headers: list[str], sample_row: Optional[list[str]]) -> str:
    """Build the column mapping prompt.

    Args:
        headers: Header cells in file order.
        sample_row: First data row, if the file has one.

    Returns:
        Formatted prompt string.
    """
    sample = sample_row if sample_row is not None else []
    template = ", ".join(f'"{role}": "header or null"' for role in COLUMN_ROLES)
    return f"""Headers: {json.dumps(headers)}
Sample row: {json.dumps(sample)}

Respond with JSON only:
{{{template}}}"""


STANDARDIZATION_SYSTEM_PROMPT = f"""You map category labels exported by banks onto a \
fixed list of standard categories. Pick the single closest standard category for each \
label. Only use categories from this list:

{_TAXONOMY_LIST}

{JSON_ONLY}"""


def build_standardization_prompt(labels: list[str]) -> str:
    """Build the category standardization prompt.

    Args:
        labels: Distinct raw category labels.

    Returns:
        Formatted prompt string.
    """
    label_list = "\n".join(f"- {json.dumps(label)}" for label in labels)
    return f"""Map each of these category labels to a standard category:

{label_list}

Respond with a JSON object mapping every label above to one standard category:
{{"<label>": "<standard category>"}}"""


CATEGORIZATION_SYSTEM_PROMPT = f"""You are a financial transaction categorizer. \
Assign each transaction to the most appropriate category from this list:

{_TAXONOMY_LIST}

Guidelines:
1. Base your categorization on the merchant name, the amount, and whether money went in or out
2. "SQ *", "TST*", "CLOVER*" prefixes are point-of-sale terminals; categorize by the merchant name
3. "PAYPAL *" is an online payment; categorize by the merchant after PAYPAL
4. Inflows such as payroll and refunds of pay are Income
5. If nothing fits, use Other

{JSON_ONLY}"""


def _direction(amount: Decimal) -> str:
    return "inflow" if amount > 0 else "outflow"


def build_categorization_prompt(merchant: str, amount: Decimal) -> str:
    """Build a categorization prompt for a single transaction.

    Args:
        merchant: Cleaned merchant name.
        amount: Signed amount.

    Returns:
        Formatted prompt string.
    """
    return f"""Categorize this transaction:
- Merchant: {merchant}
- Amount: {abs(amount):.2f} ({_direction(amount)})

Respond with JSON only:
{{"category": "<standard category>"}}"""


def build_batch_categorization_prompt(items: list[tuple[str, Decimal]]) -> str:
    """Build a prompt for batch categorization.

    Args:
        items: (merchant, signed amount) pairs in the order answers are expected.

    Returns:
        Formatted prompt string.
    """
    txn_list = "\n".join(
        f"{i + 1}. {json.dumps(merchant)} | {abs(amount):.2f} | {_direction(amount)}"
        for i, (merchant, amount) in enumerate(items)
    )
    return f"""Categorize each of these {len(items)} transactions:

{txn_list}

Respond with a JSON array of exactly {len(items)} category names, in the same order:
["<standard category>", ...]"""
