"""Tests for QuickBooksClient against a mocked QuickBooks API."""

import asyncio
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from accounting import (
    AccountingError, BillLine, BillRequest, QuickBooksClient, VendorRef,
    category_for_filing, suggest_category,
)
from accounting import quickbooks

ACCOUNTS = [
    {'Id': "10", 'Name': "Advertising"},
    {'Id': "11", 'Name': "Supplies & Materials"},
    {'Id': "12", 'Name': "Rent or Lease"},
]


class FakeQuickBooks:
    """Handler for httpx.MockTransport emulating the QuickBooks v3 API."""

    def __init__(self):
        self.vendors = {"Verde Farms": "55"}
        self.bills = []
        self.requests = []
        self.fail_vendor_create = False
        # Endpoints ("/bill", "/vendor") that time out once after doing the write
        self.time_out_after_write = set()

    def posts(self, endpoint: str):
        return [r for r in self.requests if r.method == "POST" and r.url.path.endswith(endpoint)]

    def _timeout(self, endpoint: str, request: httpx.Request) -> None:
        if endpoint in self.time_out_after_write:
            self.time_out_after_write.discard(endpoint)
            raise httpx.ReadTimeout("timed out waiting for response", request=request)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/query"):
            return self._query(request.url.params['query'])
        if path.endswith("/vendor"):
            body = json.loads(request.content)
            if self.fail_vendor_create:
                return httpx.Response(400, json={'Fault': {'Error': [{'Message': "Duplicate Name"}]}})
            vendor_id = str(100 + len(self.vendors))
            self.vendors[body['DisplayName']] = vendor_id
            self._timeout("/vendor", request)
            return httpx.Response(200, json={'Vendor': {'Id': vendor_id, 'DisplayName': body['DisplayName']}})
        if path.endswith("/bill"):
            body = json.loads(request.content)
            self.bills.append(body)
            self._timeout("/bill", request)
            total = sum(line['Amount'] for line in body['Line'])
            return httpx.Response(200, json={'Bill': {
                'Id': str(900 + len(self.bills)),
                'TotalAmt': total,
                'TxnDate': "2026-03-15",
                'VendorRef': body['VendorRef'],
            }})
        return httpx.Response(404, text="not found")

    def _query(self, query: str) -> httpx.Response:
        if "FROM Vendor" in query:
            name = query.split("DisplayName = '", 1)[1].rsplit("'", 1)[0].replace("''", "'")
            if name in self.vendors:
                return httpx.Response(200, json={'QueryResponse': {
                    'Vendor': [{'Id': self.vendors[name], 'DisplayName': name}]}})
            return httpx.Response(200, json={'QueryResponse': {}})
        if "FROM Account" in query:
            return httpx.Response(200, json={'QueryResponse': {'Account': ACCOUNTS}})
        if "FROM Bill" in query:
            start = int(query.split("STARTPOSITION ")[1].split()[0])
            page = [
                {'Id': str(i), 'TotalAmt': 10 * i, 'TxnDate': f"2026-03-{i:02d}",
                 'VendorRef': {'value': "55", 'name': "Verde Farms"}}
                for i in range(start, min(start + quickbooks.BILL_PAGE_SIZE, 6))
            ]
            return httpx.Response(200, json={'QueryResponse': {'Bill': page}})
        return httpx.Response(400, text="bad query")


@pytest.fixture
def api():
    return FakeQuickBooks()


@pytest.fixture
def client(api):
    return QuickBooksClient(
        access_token="token", realm_id="realm-1", transport=httpx.MockTransport(api))


class TestVendors:

    def test_existing_vendor_is_reused(self, client, api):
        vendor = asyncio.run(client.find_or_create_vendor("Verde Farms"))
        assert vendor == VendorRef("55", "Verde Farms")
        assert all(r.method == "GET" for r in api.requests)

    def test_new_vendor_is_created(self, client, api):
        vendor = asyncio.run(client.find_or_create_vendor("City Water"))
        assert vendor.display_name == "City Water"
        assert api.vendors["City Water"] == vendor.id

    def test_quotes_are_escaped(self, client, api):
        api.vendors["O'Brien Electric"] = "77"
        vendor = asyncio.run(client.find_vendor("O'Brien Electric"))
        assert vendor.id == "77"
        assert "O''Brien" in api.requests[0].url.params['query']

    def test_create_failure_raises(self, client, api):
        api.fail_vendor_create = True
        with pytest.raises(AccountingError, match="Duplicate Name"):
            asyncio.run(client.find_or_create_vendor("City Water"))

    def test_create_timeout_finds_created_vendor(self, client, api):
        api.time_out_after_write.add("/vendor")
        vendor = asyncio.run(client.find_or_create_vendor("City Water"))
        assert vendor.id == api.vendors["City Water"]
        assert len(api.posts("/vendor")) == 1

    def test_requests_are_authenticated(self, client, api):
        asyncio.run(client.find_vendor("Verde Farms"))
        request = api.requests[0]
        assert request.headers['Authorization'] == "Bearer token"
        assert request.url.host == "sandbox-quickbooks.api.intuit.com"
        assert request.url.path == "/v3/company/realm-1/query"


class TestBills:

    def test_create_bill(self, client, api):
        request = BillRequest(
            vendor=VendorRef("55", "Verde Farms"),
            due_date=date(2026, 3, 31),
            line_items=[BillLine("Seed trays", Decimal("1250.00"), category="Supplies")],
            doc_number="INV-1001",
        )
        bill = asyncio.run(client.create_bill(request))

        assert bill.id == "901"
        assert bill.total == Decimal("1250.0")
        assert bill.vendor_name == "Verde Farms"
        assert bill.txn_date == date(2026, 3, 15)

        body = api.bills[0]
        assert body['DueDate'] == "2026-03-31"
        assert body['DocNumber'] == "INV-1001"
        line = body['Line'][0]
        assert line['Amount'] == 1250.0
        assert line['DetailType'] == "AccountBasedExpenseLineDetail"
        assert line['AccountBasedExpenseLineDetail']['AccountRef']['value'] == "11"

    def test_bill_post_is_not_resent_after_timeout(self, client, api):
        api.time_out_after_write.add("/bill")
        request = BillRequest(VendorRef("55", "Verde Farms"), date(2026, 3, 31),
                              [BillLine("Seed trays", Decimal("1250.00"), category="Supplies")])

        with pytest.raises(AccountingError, match="timed out"):
            asyncio.run(client.create_bill(request))
        assert len(api.posts("/bill")) == 1
        assert len(api.bills) == 1

    def test_unmatched_category_uses_first_account(self, client, api):
        request = BillRequest(VendorRef("55", "Verde Farms"), date(2026, 3, 31),
                              [BillLine("Misc", Decimal("5.00"), category="Payroll")])
        asyncio.run(client.create_bill(request))
        assert api.bills[0]['Line'][0]['AccountBasedExpenseLineDetail']['AccountRef']['value'] == "10"

    def test_bill_needs_lines(self, client):
        with pytest.raises(AccountingError):
            asyncio.run(client.create_bill(BillRequest(VendorRef("55", "Verde Farms"), date(2026, 3, 31), [])))

    def test_list_bills_pages_through_results(self, client, api, monkeypatch):
        monkeypatch.setattr(quickbooks, 'BILL_PAGE_SIZE', 2)
        bills = asyncio.run(client.list_bills("realm-2"))

        assert [b.id for b in bills] == ["1", "2", "3", "4", "5"]
        assert bills[2].total == Decimal("30")
        assert bills[2].txn_date == date(2026, 3, 3)
        assert all("/v3/company/realm-2/" in str(r.url) for r in api.requests)

    def test_missing_realm(self, api):
        client = QuickBooksClient(access_token="token", realm_id="",
                                  transport=httpx.MockTransport(api))
        with pytest.raises(AccountingError):
            asyncio.run(client.find_vendor("Verde Farms"))


class TestCategories:

    def test_filing_category_mapping(self):
        assert category_for_filing("Utility Invoices") == "Utilities"
        assert category_for_filing("Property Invoices") == "Rent"

    def test_keyword_fallback(self):
        assert category_for_filing("Administrative", "Acme Insurance Co") == "Insurance"
        assert category_for_filing("", "Metro Electric") == "Utilities"

    def test_default_category(self):
        assert suggest_category("Zed Corp", "widgets") == "Miscellaneous"
