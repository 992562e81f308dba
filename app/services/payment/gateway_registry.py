"""
Gateway Registry
Read-only lookups of enabled payment gateways
"""
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.payment.gateway_config import PaymentGatewayConfig, GatewayConfigResponse
from app.services.payment.errors import UnsupportedCurrency, GatewayDisabled


class GatewayRegistry:
    """
    Service for gateway lookups.
    Gateway rows are edited by admin tooling; checkout only reads them.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.gateways = db.payment_gateways
        self.currencies = db.currencies
        self.supported_currencies = db.supported_currencies

    async def list_gateways(self, currency: Optional[str] = None) -> List[PaymentGatewayConfig]:
        """
        Get enabled gateways ordered by provider then display name.

        Args:
            currency: Optional currency code. When given, only gateways
                supporting that currency are returned.

        Raises:
            UnsupportedCurrency: currency code is not registered
        """
        query: Dict[str, Any] = {"is_enabled": True}

        if currency:
            code = currency.upper()
            currency_row = await self.currencies.find_one({"code": code})
            if not currency_row:
                raise UnsupportedCurrency(code)

            cursor = self.supported_currencies.find({"currency_id": currency_row["currency_id"]})
            joins = await cursor.to_list(length=500)
            query["gateway_id"] = {"$in": [row["gateway_id"] for row in joins]}

        cursor = self.gateways.find(query).sort([("provider", 1), ("display_name", 1)])
        rows = await cursor.to_list(length=100)

        return [PaymentGatewayConfig(**self._strip_id(row)) for row in rows]

    async def list_public_gateways(self, currency: Optional[str] = None) -> List[Dict[str, Any]]:
        """Gateway list without secrets"""
        gateways = await self.list_gateways(currency)
        return [
            GatewayConfigResponse(
                gateway_id=g.gateway_id,
                provider=g.provider,
                display_name=g.display_name,
                public_key=g.public_key,
            ).model_dump(mode="json")
            for g in gateways
        ]

    async def get_enabled_gateway(self, gateway_id: Optional[str]) -> PaymentGatewayConfig:
        """Gateway selected at checkout; must exist and be enabled"""
        row = await self.gateways.find_one({"gateway_id": gateway_id}) if gateway_id else None
        if not row or not row.get("is_enabled"):
            raise GatewayDisabled("Selected payment gateway is disabled")
        return PaymentGatewayConfig(**self._strip_id(row))

    async def get_enabled_gateway_for_provider(self, provider: str) -> PaymentGatewayConfig:
        """Currently enabled gateway for a provider (used at confirmation time)"""
        row = await self.gateways.find_one({"provider": provider, "is_enabled": True})
        if not row:
            raise GatewayDisabled(f"{provider} payment gateway is disabled")
        return PaymentGatewayConfig(**self._strip_id(row))

    @staticmethod
    def _strip_id(row: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in row.items() if k != "_id"}
