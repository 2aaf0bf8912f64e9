"""Contact <-> ERP partner translation.

Outbound: companies become business partners (type "B") named after the
company, with the person as contact_name; everyone else is a person
partner ("P"). The partner code is the mapped remote code if known,
otherwise CONT-{first 8 chars of local id}.

Inbound: the person name is split on the first space into first/last.
"""

from __future__ import annotations

from typing import Any

from src.erp_sync.sync.schemas import Contact, EntityType, MappingRecord
from src.erp_sync.sync.translators.base import EntityTranslator, ReferenceMap, Translation
from src.erp_sync.sync.translators.codes import PARTNER_TYPES


class ContactTranslator(EntityTranslator):
    entity_type = EntityType.CONTACT

    def to_remote(
        self,
        entity: Contact,
        refs: ReferenceMap | None = None,
        mapping: MappingRecord | None = None,
    ) -> Translation[dict[str, Any]]:
        local_id = self._required(entity.id, "id")
        person = entity.full_name
        name = self._required(entity.company or person or entity.email, "name")
        partner_type = PARTNER_TYPES.to_remote("business" if entity.company else "person")

        payload: dict[str, Any] = {
            "count_code": (mapping.remote_code if mapping and mapping.remote_code else None)
            or f"CONT-{local_id[:8]}",
            "name": name,
            "partner_type": partner_type.value,
            "sales": "true",
        }
        if person:
            payload["contact_name"] = person
        if entity.email:
            payload["email"] = entity.email
        if entity.phone:
            payload["phone"] = entity.phone
        return Translation(payload)

    def to_local(
        self,
        payload: dict[str, Any],
        refs: ReferenceMap | None = None,
        local_id: str | None = None,
    ) -> Translation[Contact]:
        warnings: list[str] = []
        name = self._required(payload.get("name") or payload.get("email"), "name")

        partner_type = PARTNER_TYPES.to_local(payload.get("partner_type"))
        if partner_type.fallback:
            warnings.append(
                f"Unmapped partner_type {payload.get('partner_type')!r}, "
                f"defaulted to {partner_type.value!r}"
            )
        is_business = partner_type.value == "business"

        person = payload.get("contact_name") or ("" if is_business else name)
        first, _, last = person.strip().partition(" ")

        contact = Contact(
            id=local_id,
            first_name=first or None,
            last_name=last.strip() or None,
            email=payload.get("email") or payload.get("contact_email"),
            phone=payload.get("phone") or payload.get("contact_phone"),
            company=payload.get("name") if is_business else None,
        )
        return Translation(contact, warnings)
