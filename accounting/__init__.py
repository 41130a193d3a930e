"""Accounting system clients for ledgerdesk.

- QuickBooksClient: QuickBooks Online (REST API v3)

Usage:
    from accounting import QuickBooksClient, BillLine, BillRequest

    qbo = QuickBooksClient(access_token=token, realm_id=realm)
    vendor = await qbo.find_or_create_vendor("Verde Farms")
    bill = await qbo.create_bill(BillRequest(vendor, due, [BillLine("Seeds", amount)]))
"""

from .base import (
    AccountingError, AccountingSystem,
    VendorRef, BillLine, BillRequest, BillRef,
)
from .quickbooks import (
    QuickBooksClient,
    FILING_CATEGORY_ACCOUNTS,
    category_for_filing,
    suggest_category,
)


__all__ = [
    'AccountingError',
    'AccountingSystem',
    'VendorRef',
    'BillLine',
    'BillRequest',
    'BillRef',
    'QuickBooksClient',
    'FILING_CATEGORY_ACCOUNTS',
    'category_for_filing',
    'suggest_category',
]
