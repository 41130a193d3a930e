"""Base classes for accounting system clients.

This module defines the abstract interface the approval and reconciliation
workflows use to write bills and read them back.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional


class AccountingError(Exception):
    """Base exception for accounting system operations."""
    pass


@dataclass
class VendorRef:
    """A vendor record in the accounting system.

    Attributes:
        id: Accounting-system vendor identifier
        display_name: Vendor display name (unique per company)
    """
    id: str
    display_name: str


@dataclass
class BillLine:
    """One categorized line item of a bill.

    Attributes:
        description: Line description shown on the bill
        amount: Line amount
        category: Expense category name. Empty means pick one from the
                  vendor name and description.
    """
    description: str
    amount: Decimal
    category: str = ""


@dataclass
class BillRequest:
    """Everything needed to create a bill."""
    vendor: VendorRef
    due_date: date
    line_items: List[BillLine] = field(default_factory=list)
    doc_number: Optional[str] = None


@dataclass
class BillRef:
    """A bill as stored in the accounting system.

    Attributes:
        id: Accounting-system bill identifier
        vendor_name: Vendor display name ('Unknown' if the bill has none)
        total: Bill total
        txn_date: Transaction date of the bill, if set
    """
    id: str
    vendor_name: str
    total: Decimal
    txn_date: Optional[date]


class AccountingSystem(ABC):
    """Abstract base class for accounting system clients."""

    @abstractmethod
    async def find_or_create_vendor(self, display_name: str) -> VendorRef:
        """Look up a vendor by exact display name, creating it if absent.

        Must tolerate concurrent calls for the same name without producing
        duplicate vendors.

        Args:
            display_name: Vendor display name

        Returns:
            The existing or newly created vendor

        Raises:
            AccountingError: If the lookup or creation fails
        """
        pass

    @abstractmethod
    async def create_bill(self, request: BillRequest) -> BillRef:
        """Create a bill with categorized line items.

        Args:
            request: Vendor, due date and line items

        Returns:
            Reference to the created bill

        Raises:
            AccountingError: If the bill can't be created
        """
        pass

    @abstractmethod
    async def list_bills(self, realm_id: str) -> List[BillRef]:
        """List the current bills of an accounting entity.

        Args:
            realm_id: Accounting-system tenant (company) identifier

        Returns:
            List of BillRef objects

        Raises:
            AccountingError: If the bills can't be fetched
        """
        pass
