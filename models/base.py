"""Base classes for document classification providers.

This module defines the two-tier interface that every LLM backend implements:
a cheap Tier 1 triage that runs on every document, and an expensive Tier 2
deep extraction that only runs when Tier 1 asks for it.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional


class ClassifierError(Exception):
    """Base exception for classification operations."""
    pass


# Allowed filing folders. These map to folders inside "Invoices/" in the
# file repository and are the only valid subcategory / filingCategory values.
ALLOWED_FOLDERS = (
    "Property Invoices",
    "Repair Invoices",
    "Utility Invoices",
    "Inventory Invoices",
    "Legal Documents",
    "Payroll Documents",
    "Tax Documents",
    "Administrative",
)

# Tier 1 document categories
TIER1_CATEGORIES = (
    "financial_actionable",
    "financial_reference",
    "legal",
    "government",
    "personal",
    "unknown",
)

# Maximum file size for classification (50MB)
MAX_FILE_SIZE_MB = 50


@dataclass
class Tier1Result:
    """Result of the cheap triage tier.

    Attributes:
        category: One of TIER1_CATEGORIES
        subcategory: Filing folder, one of ALLOWED_FOLDERS
        needs_deep_analysis: True only for actionable financial documents
    """
    category: str
    subcategory: str
    needs_deep_analysis: bool

    @property
    def is_financial(self) -> bool:
        return self.category.startswith("financial")


@dataclass
class Tier2Result:
    """Result of the deep extraction tier.

    Attributes:
        vendor_name: Vendor or counterparty on the document
        amount: Total amount (0 if no price was found)
        date: Invoice date, if one could be read
        description: Short description of what was billed
        filing_category: Filing folder, one of ALLOWED_FOLDERS
        confidence: Model confidence in [0, 1], advisory only
    """
    vendor_name: str
    amount: Decimal
    date: Optional[date]
    description: str
    filing_category: str
    confidence: float = 0.0


_FOLDER_GUIDE = """
  - "Property Invoices": Rent, lease or property payments.
  - "Repair Invoices": Any fix or maintenance (e.g., AC repair, plumbing).
  - "Utility Invoices": Electric, gas, internet, water bills.
  - "Inventory Invoices": Supplies, seeds, nutrients, wholesale goods.
  - "Legal Documents": Contracts, agreements, legal documents.
  - "Payroll Documents": Employee wages, benefits, HR docs.
  - "Tax Documents": Tax forms, filings, or tax-related docs.
  - "Administrative": Permits, notices, or general docs."""


TIER1_PROMPT = """Classify this document.

CLASSIFICATION CATEGORIES:
  - financial_actionable: Bills, invoices, receipts that need payment
  - financial_reference: Bank statements, reports (no action needed)
  - legal: Contracts, agreements, legal documents
  - government: Permits, licenses, government notices
  - personal: Personal documents
  - unknown: Cannot determine

IMPORTANT: For the 'subcategory' field, you MUST use one of these exact folder names:
""" + ", ".join(ALLOWED_FOLDERS) + _FOLDER_GUIDE + """

Return ONLY raw JSON:
{"category": "string", "subcategory": "one of the exact folder names above", "needs_deep_analysis": boolean}

Set needs_deep_analysis to TRUE only for financial_actionable documents."""


TIER2_PROMPT = """Perform DEEP EXTRACTION on this financial document.
Extract: Vendor, Amount, Date, and Description.

RULES:
  - If NO PRICE is found, set amount to 0 and explain in description.
  - Use clean vendor and category names only, without personal prefixes.

IMPORTANT: For 'filingCategory', you MUST use one of these exact folder names:
""" + ", ".join(ALLOWED_FOLDERS) + _FOLDER_GUIDE + """

Return ONLY raw JSON:
{
  "vendorName": "string",
  "amount": number,
  "date": "YYYY-MM-DD",
  "description": "string",
  "filingCategory": "one of the exact folder names above",
  "confidence": number (0.0 to 1.0)
}"""


class Classifier(ABC):
    """Abstract base class for classification providers.

    All providers (OpenAI, Mistral) implement both tiers. Providers raise
    ClassifierError on any service or parse failure; deciding how to degrade
    is left to the caller.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openai', 'mistral')."""
        pass

    @abstractmethod
    async def classify_tier1(self, data: bytes, mime_type: str) -> Tier1Result:
        """Cheap triage of a raw document.

        Args:
            data: Raw document bytes (PDF or image)
            mime_type: MIME type of the document

        Returns:
            Tier1Result with category, subcategory and the deep-analysis flag

        Raises:
            ClassifierError: If the service call or response parsing fails
        """
        pass

    @abstractmethod
    async def classify_tier2(self, data: bytes, mime_type: str) -> Tier2Result:
        """Expensive deep extraction of vendor, amount, date and category.

        Args:
            data: Raw document bytes (PDF or image)
            mime_type: MIME type of the document

        Returns:
            Tier2Result with the extracted fields

        Raises:
            ClassifierError: If the service call or response parsing fails
        """
        pass

    # =========================================================================
    # Helper methods (shared by all implementations)
    # =========================================================================

    def _check_size(self, data: bytes) -> None:
        """Reject empty documents and documents over the size limit."""
        if not data:
            raise ClassifierError("Document is empty")
        if len(data) > MAX_FILE_SIZE_MB * 1024 * 1024:
            raise ClassifierError(
                f"Document exceeds {MAX_FILE_SIZE_MB}MB limit "
                f"({len(data) / 1024 / 1024:.1f}MB)"
            )

    def _parse_json_response(self, response: Optional[str]) -> Dict[str, Any]:
        """Parse a JSON object from a model response, tolerating code fences."""
        if not response:
            raise ClassifierError("Empty response from model")
        cleaned = re.sub(r'```(?:json)?', '', response).strip()
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Response is not valid JSON: {e}")
        if not isinstance(parsed, dict):
            raise ClassifierError("Response is not a JSON object")
        return parsed

    def _parse_tier1(self, response: Optional[str]) -> Tier1Result:
        data = self._parse_json_response(response)
        missing = {'category', 'subcategory', 'needs_deep_analysis'} - set(data)
        if missing:
            raise ClassifierError(f"Incorrect format. Missing fields: {missing}")
        return Tier1Result(
            category=str(data['category']),
            subcategory=str(data['subcategory']),
            needs_deep_analysis=_parse_bool(data['needs_deep_analysis']),
        )

    def _parse_tier2(self, response: Optional[str]) -> Tier2Result:
        data = self._parse_json_response(response)
        missing = {'vendorName', 'amount', 'filingCategory'} - set(data)
        if missing:
            raise ClassifierError(f"Incorrect format. Missing fields: {missing}")
        try:
            amount = Decimal(str(data['amount'] or 0))
        except InvalidOperation:
            raise ClassifierError(f"Invalid amount: {data['amount']!r}")
        return Tier2Result(
            vendor_name=str(data['vendorName']).strip(),
            amount=max(amount, Decimal("0")),
            date=_parse_date(data.get('date')),
            description=str(data.get('description') or ""),
            filing_category=str(data['filingCategory']),
            confidence=_parse_confidence(data.get('confidence')),
        )


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _parse_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)
