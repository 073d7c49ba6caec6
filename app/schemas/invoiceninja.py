"""Pydantic schemas for Invoice Ninja (source system) entities.

Only the fields the Xero sync reads are declared; everything else in the
Invoice Ninja v5 payloads is ignored.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional


# Invoice Ninja v5 invoice status ids
class InvoiceStatus:
    DRAFT = "1"
    SENT = "2"
    VIEWED = "3"
    APPROVED = "4"
    PARTIAL = "5"
    PAID = "6"
    CANCELLED = "7"


class NinjaSchema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NinjaContact(NinjaSchema):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class NinjaClient(NinjaSchema):
    id: str
    name: str = ""
    display_name: Optional[str] = None
    contacts: List[NinjaContact] = []


class NinjaLineItem(NinjaSchema):
    product_key: Optional[str] = None
    notes: Optional[str] = None
    cost: float = 0
    quantity: float = 1


class NinjaInvoice(NinjaSchema):
    id: str
    number: str = ""
    client_id: Optional[str] = None
    amount: float = 0
    balance: float = 0
    status_id: str = InvoiceStatus.DRAFT
    date: Optional[str] = None
    due_date: Optional[str] = None
    line_items: List[NinjaLineItem] = []
    client: Optional[NinjaClient] = None

    @field_validator("status_id", mode="before")
    @classmethod
    def _status_as_string(cls, value: Any) -> str:
        return str(value)

    @field_validator("number", mode="before")
    @classmethod
    def _number_as_string(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("date", "due_date", mode="before")
    @classmethod
    def _blank_date_is_none(cls, value: Any) -> Optional[str]:
        return value or None


class NinjaAllocation(NinjaSchema):
    """A slice of a payment applied to one invoice."""
    invoice_id: str
    amount: float = 0


class NinjaPayment(NinjaSchema):
    id: str
    number: str = ""
    client_id: Optional[str] = None
    amount: float = 0
    date: Optional[str] = None
    transaction_reference: Optional[str] = None
    invoices: List[NinjaAllocation] = Field(default_factory=list)

    @field_validator("number", mode="before")
    @classmethod
    def _number_as_string(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @model_validator(mode="before")
    @classmethod
    def _normalise_allocations(cls, data: Any) -> Any:
        """Accept either `invoices` or `paymentables` as the allocation list.

        Included invoice objects carry their id as `id` and the applied
        amount as `paid_to_date`/`amount`; paymentables carry `invoice_id`.
        """
        if not isinstance(data, dict):
            return data
        raw = data.get("invoices")
        id_keys = ("invoice_id", "id")
        if not raw:
            raw = data.get("paymentables") or []
            id_keys = ("invoice_id", "paymentable_id")
        allocations: List[Dict[str, Any]] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            invoice_id = item.get(id_keys[0]) or item.get(id_keys[1])
            if not invoice_id:
                continue
            allocations.append({
                "invoice_id": str(invoice_id),
                "amount": item.get("amount", item.get("paid_to_date", 0)) or 0,
            })
        return {**data, "invoices": allocations}
