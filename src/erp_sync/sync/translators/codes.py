"""Static bidirectional code tables between CRM and ERP vocabularies.

Each CodeTable maps local codes to remote codes and back. Lookups never
fail: an unmapped code resolves to the table's default and the result is
flagged as a fallback so the caller can log a warning.
"""

from __future__ import annotations

from typing import NamedTuple


class CodeLookup(NamedTuple):
    value: str
    fallback: bool


class CodeTable:
    """Bidirectional code table with explicit defaults.

    Args:
        name: Table name used in fallback warnings.
        pairs: (local, remote) pairs; the first pair for a remote code wins
            on reverse lookup.
        default_local: Local code used when a remote code is unmapped.
        aliases: Extra local spellings mapped onto canonical local codes.
    """

    def __init__(
        self,
        name: str,
        pairs: list[tuple[str, str]],
        default_local: str,
        aliases: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self._to_remote = dict(pairs)
        self._to_local: dict[str, str] = {}
        for local, remote in pairs:
            self._to_local.setdefault(remote.lower(), local)
        self._aliases = aliases or {}
        self.default_local = default_local
        self.default_remote = self._to_remote[default_local]

    def to_remote(self, local_code: str | None) -> CodeLookup:
        key = (local_code or "").strip().lower()
        key = self._aliases.get(key, key)
        if key in self._to_remote:
            return CodeLookup(self._to_remote[key], False)
        return CodeLookup(self.default_remote, True)

    def to_local(self, remote_code: str | None) -> CodeLookup:
        key = (remote_code or "").strip().lower()
        if key in self._to_local:
            return CodeLookup(self._to_local[key], False)
        return CodeLookup(self.default_local, True)

    def remote_codes(self) -> list[str]:
        return list(dict.fromkeys(self._to_remote.values()))

    def local_codes(self) -> list[str]:
        return list(self._to_remote)


DOCUMENT_TYPES = CodeTable(
    "document_type",
    [
        ("invoice", "sales_bill"),
        ("offer", "sales_offer"),
        ("order", "sales_order"),
        ("proforma", "sales_bill_proforma"),
    ],
    default_local="invoice",
    aliases={"quote": "offer", "proforma_invoice": "proforma"},
)

DOCUMENT_STATUSES = CodeTable(
    "document_status",
    [
        ("draft", "draft"),
        ("sent", "sent"),
        ("confirmed", "confirmed"),
        ("paid", "paid"),
        ("overdue", "overdue"),
        ("cancelled", "canceled"),
    ],
    default_local="draft",
    aliases={"canceled": "cancelled"},
)

ORDER_STATUSES = CodeTable(
    "order_status",
    [
        ("draft", "draft"),
        ("confirmed", "confirmed"),
        ("processing", "in_process"),
        ("partially_fulfilled", "partially_shipped"),
        ("fulfilled", "shipped"),
        ("cancelled", "canceled"),
        ("on_hold", "on_hold"),
    ],
    default_local="draft",
    aliases={"canceled": "cancelled", "shipped": "fulfilled"},
)

PARTNER_TYPES = CodeTable(
    "partner_type",
    [("person", "P"), ("business", "B")],
    default_local="person",
)
