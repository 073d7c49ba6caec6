"""Xero Accounting API client.

Thin async wrapper over the Xero REST API for the contact, invoice and
payment calls the sync needs. Every write returns a SyncResult instead of
raising, with Xero's validation errors turned into a readable message.
"""
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List
import json
import logging

import httpx

from app.xero.auth import TokenProvider


logger = logging.getLogger(__name__)

XERO_API_BASE = "https://api.xero.com/api.xro/2.0"

# Longest slice of a non-JSON error body kept in an error message
ERROR_BODY_LIMIT = 200


@dataclass
class SyncResult:
    """Uniform outcome of a Xero call or of a sync operation."""
    success: bool
    xero_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class XeroResponse:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


def parse_error_response(status_code: int, body: str) -> str:
    """Extract a message from a Xero error body.

    Validation errors (HTTP 400) come back as
    {"Message": "A validation exception occurred",
     "Elements": [{"ValidationErrors": [{"Message": "..."}]}]};
    the specific validation messages are preferred over the generic one.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return f"HTTP {status_code}: {body[:ERROR_BODY_LIMIT]}"

    if not isinstance(payload, dict):
        return f"HTTP {status_code}: {body[:ERROR_BODY_LIMIT]}"

    validation_messages: List[str] = []
    for element in payload.get("Elements") or []:
        for validation_error in element.get("ValidationErrors") or []:
            if validation_error.get("Message"):
                validation_messages.append(validation_error["Message"])
    if validation_messages:
        return "; ".join(validation_messages)

    return (
        payload.get("Message")
        or payload.get("message")
        or payload.get("Detail")
        or f"HTTP {status_code}"
    )


def escape_where_value(value: str) -> str:
    """Escape a value for use inside a Xero `where` string literal."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


class XeroClient:
    """Authenticated Xero API client for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        access_token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = XERO_API_BASE,
    ):
        self.tenant_id = tenant_id
        self._access_token = access_token
        self._transport = transport
        self._base_url = base_url

    @classmethod
    async def create(
        cls,
        token_provider: TokenProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> Optional["XeroClient"]:
        """Create a client from valid tokens, or None if Xero is not connected."""
        tokens = await token_provider.get_valid_tokens()
        if not tokens:
            logger.error("No valid Xero tokens available")
            return None
        return cls(tokens.tenant_id, tokens.token_set.access_token, transport=transport)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> XeroResponse:
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "xero-tenant-id": self.tenant_id,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                transport=self._transport,
                timeout=30,
            ) as client:
                response = await client.request(
                    method,
                    endpoint,
                    params=params,
                    json=body,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.error(f"Xero request error ({method} {endpoint}): {e!r}")
            return XeroResponse(success=False, error=str(e) or e.__class__.__name__)

        if response.status_code >= 400:
            logger.error(f"Xero API error ({response.status_code}): {response.text[:1000]}")
            return XeroResponse(
                success=False,
                error=parse_error_response(response.status_code, response.text),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        return XeroResponse(success=True, data=data, status_code=response.status_code)

    # -------------------------------------------------------------------------
    # Organisation
    # -------------------------------------------------------------------------

    async def get_organisation(self) -> Optional[Dict[str, Any]]:
        """Get organisation details, used to test the connection."""
        result = await self._request("GET", "/Organisation")
        if result.success and result.data and result.data.get("Organisations"):
            return result.data["Organisations"][0]
        return None

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def find_contact(self, name: str, email: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find a contact by exact name, or by email address when given."""
        where = f'Name=="{escape_where_value(name)}"'
        if email:
            where += f' OR EmailAddress=="{escape_where_value(email)}"'

        result = await self._request("GET", "/Contacts", params={"where": where})
        if result.success and result.data and result.data.get("Contacts"):
            return result.data["Contacts"][0]
        return None

    async def create_contact(self, contact: Dict[str, Any]) -> SyncResult:
        result = await self._request("POST", "/Contacts", body={"Contacts": [contact]})

        contacts = (result.data or {}).get("Contacts") or []
        if result.success and contacts and contacts[0].get("ContactID"):
            return SyncResult(success=True, xero_id=contacts[0]["ContactID"])
        return SyncResult(success=False, error=result.error or "Failed to create contact")

    async def get_or_create_contact(self, contact: Dict[str, Any]) -> SyncResult:
        """Return the id of a matching contact, creating one if none exists.

        An existing contact with the same name is reused, so two different
        clients sharing a name end up on one Xero contact.
        """
        existing = await self.find_contact(contact["Name"], contact.get("EmailAddress"))
        if existing and existing.get("ContactID"):
            return SyncResult(success=True, xero_id=existing["ContactID"])

        return await self.create_contact(contact)

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def find_invoice_by_reference(self, reference: str) -> Optional[Dict[str, Any]]:
        """Find an invoice by Reference (the Invoice Ninja invoice number)."""
        result = await self._request(
            "GET",
            "/Invoices",
            params={"where": f'Reference=="{escape_where_value(reference)}"'},
        )
        if result.success and result.data and result.data.get("Invoices"):
            return result.data["Invoices"][0]
        return None

    async def create_invoice(self, invoice: Dict[str, Any]) -> SyncResult:
        result = await self._request("POST", "/Invoices", body={"Invoices": [invoice]})

        invoices = (result.data or {}).get("Invoices") or []
        if result.success and invoices and invoices[0].get("InvoiceID"):
            return SyncResult(success=True, xero_id=invoices[0]["InvoiceID"])
        return SyncResult(success=False, error=result.error or "Failed to create invoice")

    async def update_invoice(self, invoice_id: str, invoice: Dict[str, Any]) -> SyncResult:
        result = await self._request(
            "POST",
            f"/Invoices/{invoice_id}",
            body={"Invoices": [{**invoice, "InvoiceID": invoice_id}]},
        )
        if result.success:
            return SyncResult(success=True, xero_id=invoice_id)
        return SyncResult(success=False, error=result.error or "Failed to update invoice")

    async def void_invoice(self, invoice_id: str) -> SyncResult:
        """Move an invoice to the terminal VOIDED status (Xero never deletes)."""
        result = await self._request(
            "POST",
            f"/Invoices/{invoice_id}",
            body={"Invoices": [{"InvoiceID": invoice_id, "Status": "VOIDED"}]},
        )
        if result.success:
            return SyncResult(success=True, xero_id=invoice_id)
        return SyncResult(success=False, error=result.error or "Failed to void invoice")

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    async def create_payment(self, payment: Dict[str, Any]) -> SyncResult:
        """Apply a payment to a single invoice."""
        result = await self._request("PUT", "/Payments", body={"Payments": [payment]})

        payments = (result.data or {}).get("Payments") or []
        if result.success and payments and payments[0].get("PaymentID"):
            return SyncResult(success=True, xero_id=payments[0]["PaymentID"])
        return SyncResult(success=False, error=result.error or "Failed to create payment")


# ============================================================================
# CONNECTION HELPERS
# ============================================================================

async def is_xero_connected(token_provider: TokenProvider) -> bool:
    """Check that valid (or refreshable) tokens exist."""
    return await token_provider.get_valid_tokens() is not None


async def test_xero_connection(token_provider: TokenProvider) -> Dict[str, Any]:
    """Probe the Organisation endpoint with the stored tokens."""
    client = await XeroClient.create(token_provider)
    if not client:
        return {"connected": False, "error": "No valid tokens"}

    organisation = await client.get_organisation()
    if organisation:
        return {"connected": True, "organisation_name": organisation.get("Name")}
    return {"connected": False, "error": "Failed to get organisation"}
