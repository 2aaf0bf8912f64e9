"""ERP gateway layer -- pluggable per-entity-type remote capability.

Provides the abstract RemoteGateway interface with concrete implementations
over the ERP's RPC-style JSON API:
- ErpClient: httpx client with transport and in-band error classification
- ContactGateway, ProductGateway, SalesDocumentGateway, OrderGateway
- build_gateways(): gateway set for one tenant's credentials
"""

from src.erp_sync.sync.gateway.base import GatewaySet, RemoteGateway
from src.erp_sync.sync.gateway.client import ErpClient
from src.erp_sync.sync.gateway.gateways import (
    ContactGateway,
    OrderGateway,
    ProductGateway,
    SalesDocumentGateway,
    build_gateways,
)

__all__ = [
    "GatewaySet",
    "RemoteGateway",
    "ErpClient",
    "ContactGateway",
    "ProductGateway",
    "SalesDocumentGateway",
    "OrderGateway",
    "build_gateways",
]
