"""Invoice Ninja → Xero mapping functions.

Pure functions, no I/O. Output dicts use Xero's PascalCase wire format.
"""
from typing import Dict, Any, List

from app.schemas.invoiceninja import (
    InvoiceStatus,
    NinjaClient,
    NinjaInvoice,
    NinjaPayment,
)


INVOICE_STATUS_MAP = {
    InvoiceStatus.DRAFT: "DRAFT",
    InvoiceStatus.SENT: "AUTHORISED",
    InvoiceStatus.VIEWED: "AUTHORISED",
    InvoiceStatus.APPROVED: "AUTHORISED",
    InvoiceStatus.PARTIAL: "AUTHORISED",
    InvoiceStatus.PAID: "PAID",
    InvoiceStatus.CANCELLED: "VOIDED",
}


def map_invoice_status(ninja_status_id: str) -> str:
    """Map an Invoice Ninja status id to a Xero invoice status.

    Unknown ids map to DRAFT.
    """
    return INVOICE_STATUS_MAP.get(str(ninja_status_id), "DRAFT")


def map_line_items(invoice: NinjaInvoice, account_code: str) -> List[Dict[str, Any]]:
    """One Xero line item per Invoice Ninja item.

    Invoices without line items get a single line for the full amount.
    """
    if invoice.line_items:
        return [
            {
                "Description": item.notes or item.product_key or "Product/Service",
                "Quantity": item.quantity or 1,
                "UnitAmount": item.cost or 0,
                "AccountCode": account_code,
            }
            for item in invoice.line_items
        ]

    return [
        {
            "Description": f"Invoice {invoice.number}",
            "Quantity": 1,
            "UnitAmount": invoice.amount,
            "AccountCode": account_code,
        }
    ]


def map_invoice_to_xero(
    invoice: NinjaInvoice,
    xero_contact_id: str,
    account_code: str,
) -> Dict[str, Any]:
    """Build an ACCREC (sales) invoice.

    Reference carries the Invoice Ninja number; find_invoice_by_reference
    relies on it to locate the invoice again.
    """
    return {
        "Type": "ACCREC",
        "Contact": {"ContactID": xero_contact_id},
        "Date": invoice.date,
        "DueDate": invoice.due_date or invoice.date,
        "Reference": invoice.number,
        "Status": map_invoice_status(invoice.status_id),
        "LineItems": map_line_items(invoice, account_code),
    }


def map_client_to_contact(client: NinjaClient) -> Dict[str, Any]:
    contact: Dict[str, Any] = {
        "Name": client.display_name or client.name,
        "IsCustomer": True,
    }

    primary = client.contacts[0] if client.contacts else None
    if primary:
        if primary.first_name:
            contact["FirstName"] = primary.first_name
        if primary.last_name:
            contact["LastName"] = primary.last_name
        if primary.email:
            contact["EmailAddress"] = primary.email
        if primary.phone:
            contact["Phones"] = [{"PhoneType": "DEFAULT", "PhoneNumber": primary.phone}]

    return contact


def map_payment_to_xero(
    payment: NinjaPayment,
    xero_invoice_id: str,
    payment_account_code: str,
) -> Dict[str, Any]:
    """Build a Xero payment against a single invoice.

    Invoice Ninja can split one payment over several invoices; Xero gets
    the whole amount on the invoice resolved from the first allocation.
    """
    return {
        "Invoice": {"InvoiceID": xero_invoice_id},
        "Account": {"Code": payment_account_code},
        "Date": payment.date,
        "Amount": payment.amount,
        "Reference": payment.transaction_reference or f"IN-{payment.number}",
    }
