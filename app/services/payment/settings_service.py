"""
Platform Settings
Global key/value settings read once per request and passed explicitly
"""
from dataclasses import dataclass
from typing import Any, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

DEFAULT_TOPUP_MARGIN = 40.0


@dataclass(frozen=True)
class PlatformSettings:
    """Settings the payment engine depends on"""
    in_app_purchase_enabled: bool = False
    topup_margin: float = DEFAULT_TOPUP_MARGIN


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class SettingsService:
    """Reads rows from the settings collection"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.settings = db.settings

    async def get_value(self, key: str) -> Optional[Any]:
        row = await self.settings.find_one({"key": key})
        return row.get("value") if row else None

    async def load(self) -> PlatformSettings:
        in_app = await self.get_value("in_app_purchase_enabled")
        margin = await self.get_value("topup_margin")

        return PlatformSettings(
            in_app_purchase_enabled=_as_bool(in_app) if in_app is not None else False,
            topup_margin=_as_float(margin, DEFAULT_TOPUP_MARGIN) if margin is not None else DEFAULT_TOPUP_MARGIN,
        )
