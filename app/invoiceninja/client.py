"""Invoice Ninja v5 API client.

Read-only access to the invoices, payments and clients the Xero sync
mirrors. Responses are parsed into the pydantic models in
app.schemas.invoiceninja.
"""
from typing import Optional, Dict, Any, List
import logging

import httpx

from app.config import settings
from app.schemas.invoiceninja import NinjaClient, NinjaInvoice, NinjaPayment


logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 100
# Hard stop for runaway pagination
MAX_PAGES = 200


class InvoiceNinjaError(Exception):
    """Raised when the Invoice Ninja API cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def is_invoice_ninja_configured() -> bool:
    return bool(settings.INVOICE_NINJA_URL and settings.INVOICE_NINJA_API_TOKEN)


def _on_or_after(value: Optional[str], since: Optional[str]) -> bool:
    """ISO dates compare correctly as strings."""
    if not since:
        return True
    return bool(value) and value[:10] >= since[:10]


class InvoiceNinjaClient:
    """Thin async wrapper over the Invoice Ninja REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.INVOICE_NINJA_URL).rstrip("/")
        self.api_token = api_token or settings.INVOICE_NINJA_API_TOKEN
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-Api-Token": self.api_token,
            "X-Requested-With": "XMLHttpRequest",
            "Accept": "application/json",
        }

    def _get_url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/v1{endpoint}"

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make a GET request to the Invoice Ninja API."""
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30) as client:
                response = await client.get(
                    self._get_url(endpoint),
                    headers=self._get_headers(),
                    params=params,
                )
        except httpx.HTTPError as e:
            raise InvoiceNinjaError(f"Invoice Ninja request failed: {e!r}") from e

        if response.status_code != 200:
            raise InvoiceNinjaError(
                f"Invoice Ninja API error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.json()

    async def _get_all(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch every page of a list endpoint, following meta.pagination."""
        items: List[Dict[str, Any]] = []
        page = 1

        while page <= MAX_PAGES:
            payload = await self._get(
                endpoint,
                params={**(params or {}), "page": page, "per_page": DEFAULT_PER_PAGE},
            )
            items.extend(payload.get("data") or [])

            pagination = (payload.get("meta") or {}).get("pagination") or {}
            total_pages = int(pagination.get("total_pages") or 1)
            if page >= total_pages:
                break
            page += 1

        return items

    # -------------------------------------------------------------------------
    # Single entities
    # -------------------------------------------------------------------------

    async def get_invoice(self, invoice_id: str) -> NinjaInvoice:
        payload = await self._get(f"/invoices/{invoice_id}", params={"include": "client"})
        return NinjaInvoice.model_validate(payload["data"])

    async def get_payment(self, payment_id: str) -> NinjaPayment:
        payload = await self._get(f"/payments/{payment_id}", params={"include": "paymentables"})
        return NinjaPayment.model_validate(payload["data"])

    async def get_client(self, client_id: str) -> NinjaClient:
        payload = await self._get(f"/clients/{client_id}")
        return NinjaClient.model_validate(payload["data"])

    # -------------------------------------------------------------------------
    # Lists
    # -------------------------------------------------------------------------

    async def fetch_invoices(self, since: Optional[str] = None) -> List[NinjaInvoice]:
        """All invoices dated on or after `since` (YYYY-MM-DD), oldest first."""
        raw = await self._get_all("/invoices", params={"include": "client"})
        invoices = [
            NinjaInvoice.model_validate(item)
            for item in raw
            if _on_or_after(item.get("date"), since)
        ]
        invoices.sort(key=lambda invoice: invoice.date or "")
        logger.info(f"Fetched {len(invoices)} invoices from Invoice Ninja (since={since})")
        return invoices

    async def fetch_payments(self, since: Optional[str] = None) -> List[NinjaPayment]:
        """All payments dated on or after `since` (YYYY-MM-DD), oldest first."""
        raw = await self._get_all("/payments", params={"include": "paymentables"})
        payments = [
            NinjaPayment.model_validate(item)
            for item in raw
            if _on_or_after(item.get("date"), since)
        ]
        payments.sort(key=lambda payment: payment.date or "")
        logger.info(f"Fetched {len(payments)} payments from Invoice Ninja (since={since})")
        return payments
