"""Keyword rule tables used to classify free-text remote fields.

Each table is an ordered list of ``(keywords, value)`` rules evaluated
top-to-bottom; the first rule with a keyword contained in the text wins.
Matching is a case-insensitive substring test.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

from invsync_models import HistoryAction, ItemStatus, ProductCategory

T = TypeVar("T")

Rule = tuple[tuple[str, ...], T]

# Direct remote status field
STATUS_RULES: list[Rule[ItemStatus]] = [
    (("GUDANG", "WAREHOUSE", "DI WAREHOUSE GUDANG"), ItemStatus.GUDANG),
    (
        ("TERPASANG", "INSTALLED", "OPERASIONAL", "RUSUN", "PERUMAHAN", "PINUS"),
        ItemStatus.TERPASANG,
    ),
    (("RUSAK", "DAMAGED", "REPAIR", "PERBAIKAN"), ItemStatus.RUSAK),
    (("TEKNISI", "TECHNICIAN", "LAPANGAN"), ItemStatus.TEKNISI),
]

# Free-text notes, checked before NOTE_LABEL_RULES
NOTE_STATUS_RULES: list[Rule[ItemStatus]] = [
    (
        ("gudang", "warehouse", "stock", "ready", "tersedia", "baru", "di gudang"),
        ItemStatus.GUDANG,
    ),
    (
        (
            "terpasang",
            "installed",
            "install",
            "instalasi",
            "active",
            "aktif",
            "terinstall",
            "installasi",
            "terinstal",
            "terinstalasi",
        ),
        ItemStatus.TERPASANG,
    ),
    (("rusak", "broken", "damage", "defect", "tidak bisa", "mati"), ItemStatus.RUSAK),
    (
        ("teknisi", "tech", "maintenance", "service", "repair", "diperbaiki", "perbaikan"),
        ItemStatus.TEKNISI,
    ),
]

# Literal status labels used by the remote system
NOTE_LABEL_RULES: list[Rule[ItemStatus]] = [
    (("di operasional rusun ftth",), ItemStatus.DI_OPERASIONAL_RUSUN_FTTH),
    (("di warehouse gudang",), ItemStatus.DI_WAREHOUSE_GUDANG),
    (("dioperasional perumahan ftth",), ItemStatus.DIOPERASIONAL_PERUMAHAN_FTTH),
    (("pinus luar",), ItemStatus.PINUS_LUAR),
    (("repair",), ItemStatus.REPAIR),
    (("terpasang di perumahan",), ItemStatus.TERPASANG_DI_PERUMAHAN),
    (("terpasang di rusun",), ItemStatus.TERPASANG_DI_RUSUN),
]

CATEGORY_RULES: list[Rule[ProductCategory]] = [
    (("ont", "xpon", "router", "modem", "ap", "zte", "f660"), ProductCategory.ACTIVE),
    (("kabel", "cable", "splitter", "patchcord", "pigtail"), ProductCategory.PASSIVE),
    (("splicer", "tangga", "tool", "tester", "multimeter"), ProductCategory.TOOL),
]

HISTORY_ACTION_RULES: list[Rule[HistoryAction]] = [
    (("status",), HistoryAction.UPDATE_STATUS),
    (("move", "pindah", "lokasi"), HistoryAction.MOVE),
    (("update", "edit"), HistoryAction.UPDATE_NOTES),
    (("delete", "hapus"), HistoryAction.DELETE),
]


def classify(text: str | None, rules: Sequence[Rule[T]], default: T | None = None) -> T | None:
    """Return the value of the first rule matching ``text``, else ``default``."""
    if not text:
        return default
    haystack = text.upper()
    for keywords, value in rules:
        if any(kw.upper() in haystack for kw in keywords):
            return value
    return default


def map_status(raw: str | None) -> ItemStatus:
    return classify(raw, STATUS_RULES, ItemStatus.GUDANG)  # type: ignore[return-value]


def status_from_notes(notes: str | None) -> ItemStatus | None:
    """Derive a status from free-text notes; None when nothing matches."""
    return classify(notes, NOTE_STATUS_RULES) or classify(notes, NOTE_LABEL_RULES)


def infer_category(type_name: str | None) -> ProductCategory:
    return classify(type_name, CATEGORY_RULES, ProductCategory.ACTIVE)  # type: ignore[return-value]


def classify_history_action(action_text: str | None) -> HistoryAction:
    return classify(action_text, HISTORY_ACTION_RULES, HistoryAction.CREATE)  # type: ignore[return-value]
