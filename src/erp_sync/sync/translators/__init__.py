"""Entity translators -- pure bidirectional CRM <-> ERP shape conversion.

Provides one EntityTranslator per entity type plus the static code tables
they consult. default_translators() returns the registry the orchestrator
uses.
"""

from src.erp_sync.sync.schemas import EntityType
from src.erp_sync.sync.translators.base import (
    MAX_NOTES_LENGTH,
    EntityTranslator,
    ReferenceMap,
    Translation,
)
from src.erp_sync.sync.translators.codes import (
    DOCUMENT_STATUSES,
    DOCUMENT_TYPES,
    ORDER_STATUSES,
    PARTNER_TYPES,
    CodeTable,
)
from src.erp_sync.sync.translators.contacts import ContactTranslator
from src.erp_sync.sync.translators.documents import OrderTranslator, SalesDocumentTranslator
from src.erp_sync.sync.translators.products import ProductTranslator


def default_translators() -> dict[EntityType, EntityTranslator]:
    return {
        EntityType.CONTACT: ContactTranslator(),
        EntityType.PRODUCT: ProductTranslator(),
        EntityType.SALES_DOCUMENT: SalesDocumentTranslator(),
        EntityType.ORDER: OrderTranslator(),
    }


__all__ = [
    "MAX_NOTES_LENGTH",
    "EntityTranslator",
    "ReferenceMap",
    "Translation",
    "CodeTable",
    "DOCUMENT_TYPES",
    "DOCUMENT_STATUSES",
    "ORDER_STATUSES",
    "PARTNER_TYPES",
    "ContactTranslator",
    "ProductTranslator",
    "SalesDocumentTranslator",
    "OrderTranslator",
    "default_translators",
]
