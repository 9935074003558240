"""Pydantic models for Bill.com entities.

Only the fields this library works with are declared; unknown fields in
responses are ignored. Timestamps are kept as the strings Bill.com sends.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BillModel(BaseModel):
    """Base model: camelCase aliases, construction by field name allowed."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_api(self) -> dict[str, Any]:
        """Serialize for a Crud call."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Customer(BillModel):
    """Customer in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Customer"
    is_active: str | None = None
    name: str | None = None
    account_number: str | None = Field(default=None, alias="accNumber")
    email: str | None = None


class Vendor(BillModel):
    """Vendor in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Vendor"
    is_active: str | None = None
    name: str | None = None
    account_number: str | None = Field(default=None, alias="accNumber")
    email: str | None = None


class InvoiceLineItem(BillModel):
    """Line item on a Bill.com invoice."""

    entity: str = "InvoiceLineItem"
    item_id: str | None = None
    quantity: int = 1
    amount: float = 0.0
    price: float = 0.0
    class_id: str | None = Field(default=None, alias="actgClassId")
    location_id: str | None = None
    description: str | None = None


class Invoice(BillModel):
    """Invoice in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Invoice"
    is_active: str | None = None
    amount_due: float | None = None
    amount: float | None = None
    payment_status: str | None = None
    customer_id: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    location_id: str | None = None
    class_id: str | None = Field(default=None, alias="actgClassId")
    line_items: list[InvoiceLineItem] = Field(
        default_factory=list, alias="invoiceLineItems"
    )
    to_email: bool | None = Field(default=None, alias="isToBeEmailed")


class InvoicePatch(BillModel):
    """Partial update for an invoice.

    Only fields that were explicitly given a non-None value are applied.
    """

    amount_due: float | None = None
    amount: float | None = None
    customer_id: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    location_id: str | None = None
    class_id: str | None = Field(default=None, alias="actgClassId")
    line_items: list[InvoiceLineItem] | None = Field(
        default=None, alias="invoiceLineItems"
    )
    to_email: bool | None = Field(default=None, alias="isToBeEmailed")

    def changes(self) -> dict[str, Any]:
        """Fields set on this patch, by field name."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }

    def apply(self, invoice: Invoice) -> Invoice:
        """Return a copy of ``invoice`` with this patch merged onto it."""
        return invoice.model_copy(update=self.changes(), deep=True)


class BillLineItem(BillModel):
    """Line item on a Bill.com bill."""

    entity: str = "BillLineItem"
    amount: float | None = None
    item_id: str | None = None
    quantity: int | None = None
    price: float | None = Field(default=None, alias="unitPrice")
    bill_id: str | None = Field(default=None, alias="actgBillId")
    location_id: str | None = None
    description: str | None = None


class Bill(BillModel):
    """Bill (payable) in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Bill"
    is_active: str | None = None
    vendor_id: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    line_items: list[BillLineItem] = Field(default_factory=list, alias="billLineItems")


class PaymentMade(BillModel):
    """Bill payment made to a vendor."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "BillPay"
    bill_id: str | None = None
    name: str | None = None
    payment_status: str | None = None
    amount: float | None = None
    description: str | None = None
    process_date: str | None = None


class InvoicePay(BillModel):
    """Portion of a received payment applied to one invoice."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "InvoicePay"
    invoice_id: str | None = None
    amount: float | None = None
    description: str | None = None
    # 0 paid, 1 void, 2 scheduled, 3 canceled, 4 initiated
    status: str | None = None


class PaymentReceived(BillModel):
    """Payment received from a customer."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "ReceivedPay"
    customer_id: str | None = None
    # 0 paid, 1 void, 2 scheduled, 3 canceled
    status: str | None = None
    payment_date: str | None = None
    deposit_to_account_id: str | None = None
    is_online: bool | None = None
    # 0 cash, 1 check, 2 credit card, 3 ACH, 4 PayPal, 5 other
    payment_type: str | None = None
    amount: float | None = None
    description: str | None = None
    ref_number: str | None = None
    conv_fee_amount: float | None = None
    invoice_pays: list[InvoicePay] = Field(default_factory=list)


class Location(BillModel):
    """Location in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Location"
    is_active: str | None = None
    name: str | None = None
    short_name: str | None = None
    description: str | None = None


class AccountingClass(BillModel):
    """Accounting class (``ActgClass``) in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "ActgClass"
    is_active: str | None = None
    name: str | None = None
    short_name: str | None = None
    description: str | None = None


class Item(BillModel):
    """Item (product or service) in Bill.com."""

    id: str | None = None
    created_time: str | None = None
    updated_time: str | None = None
    entity: str = "Item"
    is_active: str | None = None
    name: str | None = None
    short_name: str | None = None
    description: str | None = None


def new_invoice_line_item(
    item_id: str, amount: float, description: str | None = None
) -> InvoiceLineItem:
    """Create a line item with a quantity of 1."""
    return InvoiceLineItem(
        item_id=item_id,
        quantity=1,
        amount=amount,
        price=amount,
        description=description,
    )


def new_invoice(
    customer_id: str,
    invoice_number: str,
    due_date: date,
    class_id: str,
    location_id: str,
    line_items: list[InvoiceLineItem],
) -> Invoice:
    """Build an invoice ready to be created.

    The invoice date equals the due date, the class and location are copied
    onto every line, and the amount due starts out as the total amount.
    """
    lines = [
        line.model_copy(update={"class_id": class_id, "location_id": location_id})
        for line in line_items
    ]
    amount = sum(line.amount for line in lines)
    return Invoice(
        customer_id=customer_id,
        invoice_number=invoice_number,
        invoice_date=due_date,
        due_date=due_date,
        amount=amount,
        amount_due=amount,
        class_id=class_id,
        location_id=location_id,
        to_email=True,
        line_items=lines,
    )
