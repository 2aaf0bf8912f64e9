"""Product <-> ERP product translation."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from src.erp_sync.sync.schemas import EntityType, MappingRecord, Product, ProductInventory
from src.erp_sync.sync.translators.base import (
    EntityTranslator,
    ReferenceMap,
    Translation,
    to_decimal,
)

DEFAULT_UNIT = "piece"


class ProductTranslator(EntityTranslator):
    entity_type = EntityType.PRODUCT

    def to_remote(
        self,
        entity: Product,
        refs: ReferenceMap | None = None,
        mapping: MappingRecord | None = None,
    ) -> Translation[dict[str, Any]]:
        local_id = self._required(entity.id, "id")
        name = self._required(entity.name, "name")

        payload: dict[str, Any] = {
            "count_code": (mapping.remote_code if mapping and mapping.remote_code else None)
            or f"PROD-{local_id[:8]}",
            "name": name,
            "unit": entity.unit or DEFAULT_UNIT,
            "service": "false",
            "sales": "true",
        }
        if entity.sku:
            payload["code"] = entity.sku
        if entity.description:
            payload["name_desc"] = entity.description
        if entity.unit_price is not None:
            payload["sales_price"] = str(entity.unit_price)
        return Translation(payload)

    def to_local(
        self,
        payload: dict[str, Any],
        refs: ReferenceMap | None = None,
        local_id: str | None = None,
    ) -> Translation[Product]:
        product = Product(
            id=local_id,
            name=self._required(payload.get("name"), "name"),
            sku=payload.get("code"),
            description=payload.get("name_desc"),
            unit=payload.get("unit") or DEFAULT_UNIT,
            unit_price=to_decimal(payload.get("sales_price")),
        )
        return Translation(product)


def inventory_from_remote(product_id: str, payload: dict[str, Any]) -> ProductInventory:
    """Sum per-warehouse stock rows into one inventory view.

    Rows come from ``stock_list`` when present, otherwise the payload
    itself is treated as a single row. Available stock defaults to
    on-hand minus reserved when the ERP does not report it.
    """
    rows = payload.get("stock_list") or [payload]
    on_hand = sum((to_decimal(r.get("amount"), Decimal("0")) for r in rows), Decimal("0"))
    reserved = sum(
        (to_decimal(r.get("reserved_amount"), Decimal("0")) for r in rows), Decimal("0")
    )
    reported = [to_decimal(r.get("available_amount")) for r in rows]
    if all(value is not None for value in reported):
        available = sum(reported, Decimal("0"))
    else:
        available = on_hand - reserved
    return ProductInventory(
        product_id=product_id,
        quantity_on_hand=on_hand,
        reserved=reserved,
        available=available,
    )
