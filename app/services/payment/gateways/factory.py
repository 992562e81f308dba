"""
Payment Gateway Factory
Maps a gateway row's provider to its adapter class
"""
from typing import Dict, Optional, Type

import httpx

from app.models.payment.gateway_config import GatewayProvider, PaymentGatewayConfig
from app.services.payment.errors import GatewayDisabled
from app.services.payment.gateways.base import BasePaymentGateway, GatewayCredentials
from app.services.payment.gateways.stripe_gateway import StripeGateway
from app.services.payment.gateways.razorpay import RazorpayGateway
from app.services.payment.gateways.paypal import PaypalGateway
from app.services.payment.gateways.paystack import PaystackGateway
from app.services.payment.gateways.powertranz import PowertranzGateway


class PaymentGatewayFactory:
    """
    Factory for creating payment gateway instances.
    Adapters are built per request from the gateway row credentials,
    nothing is cached.
    """

    # Registry of available gateways
    _gateways: Dict[GatewayProvider, Type[BasePaymentGateway]] = {
        GatewayProvider.STRIPE: StripeGateway,
        GatewayProvider.RAZORPAY: RazorpayGateway,
        GatewayProvider.PAYPAL: PaypalGateway,
        GatewayProvider.PAYSTACK: PaystackGateway,
        GatewayProvider.POWERTRANZ: PowertranzGateway,
    }

    @classmethod
    def register_gateway(cls, provider: GatewayProvider, gateway_class: Type[BasePaymentGateway]):
        """
        Register a payment gateway adapter.

        Args:
            provider: Provider the adapter serves
            gateway_class: Gateway class implementing BasePaymentGateway
        """
        cls._gateways[GatewayProvider(provider)] = gateway_class

    @classmethod
    def get_gateway(
        cls,
        credentials: GatewayCredentials,
        client: Optional[httpx.AsyncClient] = None,
    ) -> BasePaymentGateway:
        """
        Get a payment gateway instance.

        Raises:
            GatewayDisabled: no adapter for the provider
        """
        gateway_class = cls._gateways.get(credentials.provider)
        if gateway_class is None:
            raise GatewayDisabled(f"Unsupported payment provider: {credentials.provider}")
        return gateway_class(credentials, client=client)

    @classmethod
    def from_config(
        cls,
        gateway: PaymentGatewayConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> BasePaymentGateway:
        """Build the adapter for a gateway row"""
        return cls.get_gateway(GatewayCredentials.from_config(gateway), client=client)
