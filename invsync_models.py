from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ItemStatus(str, Enum):
    GUDANG = "GUDANG"
    TERPASANG = "TERPASANG"
    RUSAK = "RUSAK"
    TEKNISI = "TEKNISI"
    # Remote-specific labels kept verbatim
    DI_WAREHOUSE_GUDANG = "DI_WAREHOUSE_GUDANG"
    DI_OPERASIONAL_RUSUN_FTTH = "DI_OPERASIONAL_RUSUN_FTTH"
    DIOPERASIONAL_PERUMAHAN_FTTH = "DIOPERASIONAL_PERUMAHAN_FTTH"
    PINUS_LUAR = "PINUS_LUAR"
    REPAIR = "REPAIR"
    TERPASANG_DI_PERUMAHAN = "TERPASANG_DI_PERUMAHAN"
    TERPASANG_DI_RUSUN = "TERPASANG_DI_RUSUN"


WAREHOUSE_STATUSES = frozenset({ItemStatus.GUDANG, ItemStatus.DI_WAREHOUSE_GUDANG})


class ProductCategory(str, Enum):
    ACTIVE = "Active"
    PASSIVE = "Passive"
    TOOL = "Tool"


class HistoryAction(str, Enum):
    CREATE = "CREATE"
    UPDATE_STATUS = "UPDATE_STATUS"
    UPDATE_SN = "UPDATE_SN"
    UPDATE_MAC = "UPDATE_MAC"
    UPDATE_NOTES = "UPDATE_NOTES"
    UPDATE_PURCHASE_DATE = "UPDATE_PURCHASE_DATE"
    UPDATE_LOCATION = "UPDATE_LOCATION"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    MOVE = "MOVE"


class RunStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class CanonicalItem(BaseModel):
    serial_number: str
    mac_address: str | None = None
    product_type_name: str = "Active"
    status: ItemStatus = ItemStatus.GUDANG
    purchase_date: date | None = None
    location: str = ""
    notes: str = ""

    @field_validator("serial_number")
    @classmethod
    def _serial_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("serial_number must not be empty")
        return v


class Product(BaseModel):
    id: int
    sku: str
    name: str
    category: ProductCategory
    unit: str


class Item(BaseModel):
    id: int
    product_id: int
    serial_number: str
    mac_address: str | None = None
    status: ItemStatus
    purchase_date: date | None = None
    notes: str | None = None


class HistoryEvent(BaseModel):
    id: int
    item_id: int
    action: HistoryAction
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SyncRun(BaseModel):
    id: int
    type: str
    status: RunStatus
    started_at: datetime
    finished_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None


class ReconcileResult(BaseModel):
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_messages: list[str] = Field(default_factory=list)


class HistorySyncResult(BaseModel):
    fetched: int = 0
    matched: int = 0
    created: int = 0
    duplicates: int = 0
    failed: bool = False


class SyncResult(BaseModel):
    success: bool
    created: int = 0
    updated: int = 0
    errors: int = 0
    message: str
    error: str | None = None


class SyncStatus(BaseModel):
    connected: bool
    last_sync_at: datetime | None = None
    last_sync_status: RunStatus | None = None
    api_endpoint: str | None = None
