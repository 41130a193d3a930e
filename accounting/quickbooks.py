"""QuickBooks Online accounting client.

Talks to the QuickBooks Online v3 REST API with an already-issued OAuth
access token. Token acquisition and refresh happen outside this module.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from .base import AccountingError, AccountingSystem, BillRef, BillRequest, VendorRef
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    log_retry,
    TRANSIENT_HTTP_STATUS_CODES,
)


SANDBOX_BASE_URL = "https://sandbox-quickbooks.api.intuit.com"
PRODUCTION_BASE_URL = "https://quickbooks.api.intuit.com"

# Page size for Bill queries
BILL_PAGE_SIZE = 100

DEFAULT_CATEGORY = "Miscellaneous"

# Expense account name used for each filing category
FILING_CATEGORY_ACCOUNTS = {
    "Property Invoices": "Rent",
    "Repair Invoices": "Repairs",
    "Utility Invoices": "Utilities",
    "Inventory Invoices": "Supplies",
    "Legal Documents": "Professional Services",
    "Payroll Documents": "Payroll",
    "Tax Documents": "Taxes",
    "Administrative": DEFAULT_CATEGORY,
}

# Keyword -> expense category, checked in order against vendor + description
CATEGORY_KEYWORDS = {
    'security': 'Security',
    'electric': 'Utilities',
    'water': 'Utilities',
    'gas': 'Utilities',
    'internet': 'Utilities',
    'phone': 'Utilities',
    'supplies': 'Office Supplies',
    'office': 'Office Supplies',
    'nutrient': 'Supplies',
    'growing': 'Supplies',
    'packaging': 'Supplies',
    'insurance': 'Insurance',
    'rent': 'Rent',
    'lease': 'Rent',
    'legal': 'Professional Services',
    'accounting': 'Professional Services',
    'marketing': 'Marketing',
    'advertising': 'Marketing',
}


def suggest_category(vendor_name: str, description: str = "") -> str:
    """Guess an expense category from keywords in the vendor and description."""
    search_text = f"{vendor_name} {description}".lower()
    for keyword, category in CATEGORY_KEYWORDS.items():
        if keyword in search_text:
            return category
    return DEFAULT_CATEGORY


def category_for_filing(filing_category: str, vendor_name: str = "", description: str = "") -> str:
    """Map a filing category to an expense category, falling back to keywords."""
    category = FILING_CATEGORY_ACCOUNTS.get(filing_category)
    if category and category != DEFAULT_CATEGORY:
        return category
    return suggest_category(vendor_name, description)


def _escape_query_value(value: str) -> str:
    """Escape a value for use in a QuickBooks query string."""
    return value.replace("'", "''")


def _is_retryable_qbo_error(exc: Exception) -> bool:
    """Determine if a QuickBooks API error should be retried."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in TRANSIENT_HTTP_STATUS_CODES
    if isinstance(exc, httpx.TransportError):
        return True
    return is_transient_network_error(exc)


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _to_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _bill_ref(bill: Dict[str, Any]) -> BillRef:
    vendor = bill.get('VendorRef') or {}
    return BillRef(
        id=str(bill['Id']),
        vendor_name=vendor.get('name') or 'Unknown',
        total=_to_decimal(bill.get('TotalAmt', 0)),
        txn_date=_to_date(bill.get('TxnDate')),
    )


class QuickBooksClient(AccountingSystem):
    """QuickBooks Online implementation of the accounting system.

    Each request opens a short-lived httpx.AsyncClient, so one instance can
    be shared across event loops (CLI commands, API requests, tests).
    """

    def __init__(
        self,
        access_token: str,
        realm_id: str,
        environment: str = "sandbox",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize QuickBooks client.

        Args:
            access_token: OAuth bearer token
            realm_id: Default company (realm) ID
            environment: 'production' or 'sandbox'
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.access_token = access_token
        self.realm_id = realm_id
        self.base_url = PRODUCTION_BASE_URL if environment == "production" else SANDBOX_BASE_URL
        self.timeout = timeout
        self._transport = transport

    async def _send(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        headers = {
            'Authorization': f"Bearer {self.access_token}",
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response.json()

    # Only reads are retried. A POST that timed out may still have created
    # the vendor or bill, so it fails instead of being sent twice.
    @retry_on_transient_error(
        is_retryable=_is_retryable_qbo_error,
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        on_retry=log_retry,
    )
    async def _send_with_retry(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        return await self._send(method, url, **kwargs)

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        realm_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        realm = realm_id or self.realm_id
        if not realm:
            raise AccountingError("No QuickBooks realm ID configured")
        url = f"{self.base_url}/v3/company/{realm}{endpoint}"
        send = self._send_with_retry if method == "GET" else self._send
        try:
            return await send(method, url, json=body, params=params)
        except httpx.HTTPStatusError as e:
            raise AccountingError(f"QuickBooks API error: {e.response.text}")
        except (httpx.HTTPError, OSError) as e:
            raise AccountingError(f"QuickBooks request failed: {e}")

    async def _query(self, query: str, entity: str, realm_id: Optional[str] = None) -> List[Dict[str, Any]]:
        result = await self._request("/query", params={'query': query}, realm_id=realm_id)
        return result.get('QueryResponse', {}).get(entity, [])

    # =========================================================================
    # Vendors
    # =========================================================================

    async def find_vendor(self, display_name: str) -> Optional[VendorRef]:
        """Find a vendor by exact display name."""
        escaped = _escape_query_value(display_name)
        vendors = await self._query(
            f"SELECT * FROM Vendor WHERE DisplayName = '{escaped}' MAXRESULTS 1", 'Vendor')
        if not vendors:
            return None
        return VendorRef(id=str(vendors[0]['Id']), display_name=vendors[0]['DisplayName'])

    async def find_or_create_vendor(self, display_name: str) -> VendorRef:
        vendor = await self.find_vendor(display_name)
        if vendor:
            return vendor
        try:
            result = await self._request("/vendor", method="POST", body={'DisplayName': display_name})
        except AccountingError:
            # A concurrent caller may have created it first (duplicate name)
            vendor = await self.find_vendor(display_name)
            if vendor:
                return vendor
            raise
        created = result['Vendor']
        return VendorRef(id=str(created['Id']), display_name=created['DisplayName'])

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_expense_accounts(self) -> List[Dict[str, Any]]:
        return await self._query(
            "SELECT * FROM Account WHERE AccountType = 'Expense' MAXRESULTS 1000", 'Account')

    @staticmethod
    def _pick_account(accounts: List[Dict[str, Any]], name: str) -> Dict[str, Any]:
        """Account whose name contains name, else the first expense account."""
        for account in accounts:
            if name.lower() in account.get('Name', '').lower():
                return account
        return accounts[0]

    # =========================================================================
    # Bills
    # =========================================================================

    async def create_bill(self, request: BillRequest) -> BillRef:
        if not request.line_items:
            raise AccountingError("A bill needs at least one line item")

        accounts = await self.get_expense_accounts()
        if not accounts:
            raise AccountingError("No expense accounts found in QuickBooks")

        lines = []
        for idx, item in enumerate(request.line_items):
            category = item.category or suggest_category(
                request.vendor.display_name, item.description)
            account = self._pick_account(accounts, category)
            lines.append({
                'Id': str(idx + 1),
                'Amount': float(item.amount),
                'DetailType': 'AccountBasedExpenseLineDetail',
                'AccountBasedExpenseLineDetail': {
                    'AccountRef': {
                        'value': account['Id'],
                        'name': account['Name'],
                    },
                },
                'Description': item.description,
            })

        bill_data: Dict[str, Any] = {
            'VendorRef': {
                'value': request.vendor.id,
                'name': request.vendor.display_name,
            },
            'DueDate': request.due_date.isoformat(),
            'Line': lines,
        }
        if request.doc_number:
            bill_data['DocNumber'] = request.doc_number

        result = await self._request("/bill", method="POST", body=bill_data)
        bill = result['Bill']
        bill.setdefault('VendorRef', bill_data['VendorRef'])
        return _bill_ref(bill)

    async def list_bills(self, realm_id: str) -> List[BillRef]:
        bills: List[BillRef] = []
        start = 1
        while True:
            page = await self._query(
                f"SELECT * FROM Bill STARTPOSITION {start} MAXRESULTS {BILL_PAGE_SIZE}",
                'Bill',
                realm_id=realm_id,
            )
            bills.extend(_bill_ref(bill) for bill in page)
            if len(page) < BILL_PAGE_SIZE:
                break
            start += BILL_PAGE_SIZE
        return bills
