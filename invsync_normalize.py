from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import structlog

from invsync_models import CanonicalItem
from invsync_rules import map_status

logger = structlog.get_logger()

SERIAL_KEYS = ("Serial Number", "serial_number", "serialNumber", "sn", "id")
MAC_KEYS = ("MAC Address", "mac_address", "macAddress", "mac")
TYPE_KEYS = (
    "Nama Perangkat",
    "Device Name",
    "device_name",
    "deviceName",
    "Model",
    "model",
    "Tipe Perangkat",
    "Tipe",
    "type",
    "device_type",
    "category",
)
STATUS_KEYS = ("Status", "status", "state")
PURCHASE_DATE_KEYS = (
    "Tanggal Pembelian",
    "purchase_date",
    "purchaseDate",
    "date_purchased",
    "created_at",
    "createdAt",
)
LOCATION_KEYS = ("Lokasi", "location", "lokasi", "warehouse")
NOTES_KEYS = ("Catatan", "notes", "catatan", "description")

DEFAULT_PRODUCT_TYPE = "Active"
DEFAULT_STATUS = "GUDANG"

EXCEL_EPOCH = datetime(1899, 12, 30)
EXCEL_SERIAL_MAX = 100_000
_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d/%m/%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S")


def first_value(src: dict[str, Any], keys: tuple[str, ...], default: Any = None) -> Any:
    """Return the first value present under any of ``keys`` that is not None or blank."""
    for key in keys:
        val = src.get(key)
        if val is None:
            continue
        if isinstance(val, str) and not val.strip():
            continue
        return val
    return default


def _from_number(value: float) -> datetime:
    if 0 < value < EXCEL_SERIAL_MAX:
        return EXCEL_EPOCH + timedelta(days=value)
    # Anything larger is taken as epoch milliseconds
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).replace(tzinfo=None)


def parse_date(value: Any) -> datetime | None:
    """Parse a remote date permissively; unparsable input yields None, never an error."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        if isinstance(value, (int, float)):
            return _from_number(float(value))
        if not isinstance(value, str):
            return None
        text = value.strip()
        if not text:
            return None
        try:
            return _from_number(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            pass
        else:
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            return parsed
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
    except (OverflowError, OSError, ValueError):
        return None
    return None


def records_of(raw: Any) -> list[Any]:
    """Return the record list of a raw payload (list, {"data": [...]}, or single object)."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        if isinstance(raw.get("data"), list):
            return raw["data"]
        return [raw]
    return []


def normalize_record(src: dict[str, Any]) -> CanonicalItem | None:
    """Map one remote record to a CanonicalItem; None when it has no serial number."""
    serial = str(first_value(src, SERIAL_KEYS, "")).strip()
    if not serial:
        return None

    mac = first_value(src, MAC_KEYS)
    purchased = parse_date(first_value(src, PURCHASE_DATE_KEYS))
    return CanonicalItem(
        serial_number=serial,
        mac_address=str(mac).strip() if mac is not None else None,
        product_type_name=str(first_value(src, TYPE_KEYS, DEFAULT_PRODUCT_TYPE)).strip(),
        status=map_status(str(first_value(src, STATUS_KEYS, DEFAULT_STATUS))),
        purchase_date=purchased.date() if purchased else None,
        location=str(first_value(src, LOCATION_KEYS, "")),
        notes=str(first_value(src, NOTES_KEYS, "")),
    )


def normalize(raw: Any) -> list[CanonicalItem]:
    """Convert a raw remote payload into canonical items, dropping records without a serial."""
    records = records_of(raw)
    items: list[CanonicalItem] = []
    dropped = 0
    for src in records:
        item = normalize_record(src) if isinstance(src, dict) else None
        if item is None:
            dropped += 1
            continue
        items.append(item)

    if dropped:
        logger.warning("Dropped remote records without serial number", dropped=dropped)
    logger.info("Normalized inventory payload", received=len(records), accepted=len(items))
    return items
