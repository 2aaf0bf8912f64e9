"""Sales document and order <-> ERP document translation.

Document type and status go through the static code tables; unmapped codes
fall back to invoice/draft with a warning. Orders use the order status
table and are always sent as sales orders.

Totals: the ERP carries net (sum_base), tax (sum_tax) and gross (sum_all).
Whichever of the three a side does not supply is derived from the other
two (net = gross - tax), falling back to the line items when neither side
provides enough.

Lossy fields: notes longer than MAX_NOTES_LENGTH are truncated.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from src.erp_sync.sync.schemas import (
    EntityType,
    MappingRecord,
    SalesDocument,
    SalesDocumentItem,
)
from src.erp_sync.sync.translators.base import (
    MAX_NOTES_LENGTH,
    EntityTranslator,
    ReferenceMap,
    Translation,
    to_decimal,
)
from src.erp_sync.sync.translators.codes import (
    DOCUMENT_STATUSES,
    DOCUMENT_TYPES,
    ORDER_STATUSES,
    CodeTable,
)

HUNDRED = Decimal("100")


def _line_net(item: SalesDocumentItem) -> Decimal:
    if item.total is not None:
        return item.total
    gross = item.quantity * item.unit_price
    return gross - gross * item.discount / HUNDRED


def _derive_totals(
    net: Decimal | None,
    tax: Decimal | None,
    gross: Decimal | None,
    items: list[SalesDocumentItem],
) -> tuple[Decimal, Decimal, Decimal]:
    """Fill in whichever of net/tax/gross is missing."""
    if net is None:
        if gross is not None and tax is not None:
            net = gross - tax
        else:
            net = sum((_line_net(i) for i in items), Decimal("0"))
    if tax is None:
        if gross is not None:
            tax = gross - net
        else:
            tax = sum((_line_net(i) * i.tax_rate / HUNDRED for i in items), Decimal("0"))
    if gross is None:
        gross = net + tax
    return net, tax, gross


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class SalesDocumentTranslator(EntityTranslator):
    entity_type = EntityType.SALES_DOCUMENT

    def _document_type(self, local_type: str | None, warnings: list[str]) -> tuple[str, str]:
        """Return (local, remote) document type codes."""
        lookup = DOCUMENT_TYPES.to_remote(local_type)
        if lookup.fallback:
            warnings.append(
                f"Unmapped document type {local_type!r}, defaulted to {DOCUMENT_TYPES.default_local!r}"
            )
        return DOCUMENT_TYPES.to_local(lookup.value).value, lookup.value

    def _status_table(self, local_type: str) -> CodeTable:
        return ORDER_STATUSES if local_type == "order" else DOCUMENT_STATUSES

    def local_references(self, entity: SalesDocument) -> list[tuple[EntityType, str]]:
        refs = []
        if entity.customer_id:
            refs.append((EntityType.CONTACT, entity.customer_id))
        refs.extend((EntityType.PRODUCT, i.product_id) for i in entity.items if i.product_id)
        return refs

    def remote_references(self, payload: dict[str, Any]) -> list[tuple[EntityType, str]]:
        refs = []
        if payload.get("partner_id"):
            refs.append((EntityType.CONTACT, str(payload["partner_id"])))
        refs.extend(
            (EntityType.PRODUCT, str(i["mk_id"]))
            for i in payload.get("sales_items") or []
            if i.get("mk_id")
        )
        return refs

    def to_remote(
        self,
        entity: SalesDocument,
        refs: ReferenceMap | None = None,
        mapping: MappingRecord | None = None,
    ) -> Translation[dict[str, Any]]:
        refs = refs or ReferenceMap()
        warnings: list[str] = []

        self._required(entity.id, "id")
        customer_id = self._required(entity.customer_id, "customer_id")
        partner_id = self._required(refs.remote_id(EntityType.CONTACT, customer_id), "customer_id")
        self._required(entity.items, "items")

        local_type, remote_type = self._document_type(entity.document_type, warnings)
        status_table = self._status_table(local_type)
        status = status_table.to_remote(entity.status)
        if status.fallback:
            warnings.append(
                f"Unmapped {status_table.name} {entity.status!r}, "
                f"defaulted to {status_table.default_local!r}"
            )

        net, tax, gross = _derive_totals(
            entity.subtotal, entity.tax_amount, entity.total_amount, entity.items
        )

        items = []
        for item in entity.items:
            line: dict[str, Any] = {
                "name": item.description,
                "amount": str(item.quantity),
                "price": str(item.unit_price),
                "discount": str(item.discount),
                "tax": str(item.tax_rate),
                "sum": str(_line_net(item)),
            }
            if item.product_id:
                remote_product = refs.remote_id(EntityType.PRODUCT, item.product_id)
                if remote_product is None:
                    warnings.append(
                        f"Product {item.product_id} has no ERP mapping; line sent by name only"
                    )
                else:
                    line["mk_id"] = remote_product
            items.append(line)

        payload: dict[str, Any] = {
            "doc_type": remote_type,
            "partner_id": partner_id,
            "status_code": status.value,
            "currency_code": entity.currency or "EUR",
            "sum_base": str(net),
            "sum_tax": str(tax),
            "sum_all": str(gross),
            "sales_items": items,
        }
        if entity.document_number:
            payload["doc_number"] = entity.document_number
        if entity.document_date:
            payload["doc_date"] = entity.document_date.isoformat()
        if entity.due_date:
            payload["due_date"] = entity.due_date.isoformat()
        if entity.payment_method:
            payload["payment_method"] = entity.payment_method
        if entity.notes:
            if len(entity.notes) > MAX_NOTES_LENGTH:
                warnings.append(f"Notes truncated to {MAX_NOTES_LENGTH} characters")
            payload["notes"] = entity.notes[:MAX_NOTES_LENGTH]
        return Translation(payload, warnings)

    def to_local(
        self,
        payload: dict[str, Any],
        refs: ReferenceMap | None = None,
        local_id: str | None = None,
    ) -> Translation[SalesDocument]:
        refs = refs or ReferenceMap()
        warnings: list[str] = []

        remote_type = payload.get("doc_type")
        type_lookup = DOCUMENT_TYPES.to_local(remote_type)
        if type_lookup.fallback:
            warnings.append(
                f"Unmapped remote document type {remote_type!r}, "
                f"defaulted to {type_lookup.value!r}"
            )
        local_type = type_lookup.value

        status_table = self._status_table(local_type)
        status = status_table.to_local(payload.get("status_code"))
        if status.fallback:
            warnings.append(
                f"Unmapped remote {status_table.name} {payload.get('status_code')!r}, "
                f"defaulted to {status.value!r}"
            )

        partner_id = self._required(payload.get("partner_id"), "partner_id")
        customer_id = self._required(
            refs.local_id(EntityType.CONTACT, str(partner_id)), "partner_id"
        )

        items = []
        for line in payload.get("sales_items") or []:
            product_id = None
            if line.get("mk_id"):
                product_id = refs.local_id(EntityType.PRODUCT, str(line["mk_id"]))
                if product_id is None:
                    warnings.append(f"Remote product {line['mk_id']} is not mapped locally")
            items.append(
                SalesDocumentItem(
                    product_id=product_id,
                    description=line.get("name") or "",
                    quantity=to_decimal(line.get("amount"), Decimal("1")),
                    unit_price=to_decimal(line.get("price"), Decimal("0")),
                    discount=to_decimal(line.get("discount"), Decimal("0")),
                    tax_rate=to_decimal(line.get("tax"), Decimal("0")),
                    total=to_decimal(line.get("sum")),
                )
            )

        net, tax, gross = _derive_totals(
            to_decimal(payload.get("sum_base")),
            to_decimal(payload.get("sum_tax")),
            to_decimal(payload.get("sum_all")),
            items,
        )

        remote_id = str(payload.get("mk_id") or "")
        document = SalesDocument(
            id=local_id,
            document_type=local_type,
            document_number=payload.get("doc_number") or f"MK-{remote_id[:8]}",
            document_date=_parse_date(payload.get("doc_date")),
            due_date=_parse_date(payload.get("due_date")),
            status=status.value,
            customer_id=customer_id,
            currency=payload.get("currency_code") or "EUR",
            subtotal=net,
            tax_amount=tax,
            total_amount=gross,
            notes=payload.get("notes"),
            payment_method=payload.get("payment_method"),
            items=items,
        )
        return Translation(document, warnings)


class OrderTranslator(SalesDocumentTranslator):
    """Orders: sales documents pinned to the order type and status table."""

    entity_type = EntityType.ORDER

    def to_remote(
        self,
        entity: SalesDocument,
        refs: ReferenceMap | None = None,
        mapping: MappingRecord | None = None,
    ) -> Translation[dict[str, Any]]:
        return super().to_remote(entity.model_copy(update={"document_type": "order"}), refs, mapping)

    def to_local(
        self,
        payload: dict[str, Any],
        refs: ReferenceMap | None = None,
        local_id: str | None = None,
    ) -> Translation[SalesDocument]:
        return super().to_local({**payload, "doc_type": "sales_order"}, refs, local_id)
