"""Per-entity ERP gateways built on ErpClient.

Each gateway maps the create/update/get/list capability onto the ERP's
RPC method names. Sales documents dispatch on the payload's remote
``doc_type`` code (sales_bill, sales_offer, sales_order,
sales_bill_proforma); orders are the sales_order subset plus a status
update call. Products additionally expose the warehouse stock view.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.erp_sync.sync.errors import SyncServerError
from src.erp_sync.sync.gateway.base import RemoteGateway
from src.erp_sync.sync.gateway.client import ErpClient
from src.erp_sync.sync.schemas import Credentials, EntityType, RemoteRef
from src.erp_sync.sync.translators.codes import DOCUMENT_TYPES


def _remote_ref(data: dict[str, Any], method: str) -> RemoteRef:
    remote_id = data.get("mk_id")
    if remote_id in (None, ""):
        raise SyncServerError(
            f"ERP response to {method} has no mk_id",
            details={"method": method, "response": data},
        )
    number = data.get("count_code") or data.get("doc_number")
    return RemoteRef(remote_id=str(remote_id), remote_number=number)


class _RpcGateway(RemoteGateway):
    """Gateway whose four operations are fixed RPC method names."""

    create_method: str
    update_method: str
    get_method: str
    list_method: str
    list_key: str

    def __init__(self, client: ErpClient) -> None:
        self._client = client

    async def create(self, payload: dict[str, Any]) -> RemoteRef:
        data = await self._client.call(self.create_method, payload)
        return _remote_ref(data, self.create_method)

    async def update(self, remote_id: str, payload: dict[str, Any]) -> None:
        await self._client.call(self.update_method, {**payload, "mk_id": remote_id})

    async def get(
        self, remote_id: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        data = await self._client.call(self.get_method, {"mk_id": remote_id})
        return _strip_status(data)

    async def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        data = await self._client.call(self.list_method, filters or {})
        return list(data.get(self.list_key) or [])


def _strip_status(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in ("opr_code", "opr_desc")}


class ContactGateway(_RpcGateway):
    entity_type = EntityType.CONTACT
    create_method = "partner_add"
    update_method = "partner_update"
    get_method = "partner_get"
    list_method = "partner_list"
    list_key = "partner_list"


class ProductGateway(_RpcGateway):
    entity_type = EntityType.PRODUCT
    create_method = "product_add"
    update_method = "product_update"
    get_method = "product_get"
    list_method = "product_list"
    list_key = "product_list"

    async def get_inventory(self, remote_id: str) -> dict[str, Any]:
        """Fetch warehouse stock for one product."""
        data = await self._client.call("warehouse_stock", {"mk_id": remote_id})
        return _strip_status(data)


class SalesDocumentGateway(RemoteGateway):
    """Sales documents of every remote type, dispatched on ``doc_type``."""

    entity_type = EntityType.SALES_DOCUMENT

    def __init__(self, client: ErpClient) -> None:
        self._client = client

    def _doc_type(self, source: dict[str, Any] | None) -> str:
        source = source or {}
        return (
            source.get("doc_type")
            or source.get("remote_document_type")
            or DOCUMENT_TYPES.default_remote
        )

    async def create(self, payload: dict[str, Any]) -> RemoteRef:
        method = f"put_{self._doc_type(payload)}"
        data = await self._client.call(method, payload)
        return _remote_ref(data, method)

    async def update(self, remote_id: str, payload: dict[str, Any]) -> None:
        await self._client.call(
            f"update_{self._doc_type(payload)}", {**payload, "mk_id": remote_id}
        )

    async def get(
        self, remote_id: str, metadata: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        doc_type = self._doc_type(metadata)
        data = _strip_status(await self._client.call(f"get_{doc_type}", {"mk_id": remote_id}))
        data.setdefault("doc_type", doc_type)
        return data

    async def list(self, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        filters = dict(filters or {})
        requested = filters.pop("doc_type", None)
        doc_types = [requested] if requested else self._listed_types()
        documents: list[dict[str, Any]] = []
        for doc_type in doc_types:
            data = await self._client.call(f"list_{doc_type}", filters)
            for doc in data.get(f"{doc_type}_list") or []:
                documents.append({"doc_type": doc_type, **doc})
        return documents

    def _listed_types(self) -> list[str]:
        return [code for code in DOCUMENT_TYPES.remote_codes() if code != "sales_order"]


class OrderGateway(SalesDocumentGateway):
    """Sales orders, plus the order status update call."""

    entity_type = EntityType.ORDER

    def _doc_type(self, source: dict[str, Any] | None) -> str:
        return "sales_order"

    def _listed_types(self) -> list[str]:
        return ["sales_order"]

    async def update_status(self, remote_id: str, status_code: str) -> None:
        await self._client.call(
            "update_order_status", {"mk_id": remote_id, "status_code": status_code}
        )


def build_gateways(
    credentials: Credentials,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[EntityType, RemoteGateway]:
    """Build the full gateway set for one tenant's credentials."""
    client = ErpClient(credentials, transport=transport)
    return {
        EntityType.CONTACT: ContactGateway(client),
        EntityType.PRODUCT: ProductGateway(client),
        EntityType.SALES_DOCUMENT: SalesDocumentGateway(client),
        EntityType.ORDER: OrderGateway(client),
    }
