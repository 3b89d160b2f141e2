from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_METHODS = ["GET", "POST", "PATCH"]


class EndpointConfig(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: list(DEFAULT_METHODS))

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one HTTP method is required")
        return [m.strip().upper() for m in v]


class ConfigModel(BaseModel):
    auth_path: str = "/api/auth/token"
    inventory_endpoints: list[EndpointConfig]
    history_path: str = "/api/inventory/history/all"
    item_history_path: str = "/api/inventory/{item_id}/history"


def default_config() -> ConfigModel:
    """Endpoint layout used when no config file is shipped with a deployment."""
    return ConfigModel(
        inventory_endpoints=[
            EndpointConfig(path=p)
            for p in (
                "/api/inventory/inventory",
                "/api/inventory",
                "/api/devices",
                "/api/ftth",
                "/api/stock",
                "/api/items",
            )
        ]
    )


def load_config(path: str | Path = "invsync.config.json") -> ConfigModel:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    data = json.loads(p.read_text(encoding="utf-8"))
    return ConfigModel.model_validate(data)
