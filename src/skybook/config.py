from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SKYBOOK_", env_file=".env", extra="ignore")

    storage_backend: str = Field(default="memory", description="'memory' or 'supabase'")
    supabase_url: str | None = None
    supabase_key: str | None = None

    bus_backend: str = Field(default="memory", description="'memory' or 'kafka'")
    kafka_bootstrap_servers: str = "127.0.0.1:9092"
    kafka_client_id: str = "skybook-producer"

    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"
    log_level: str = "INFO"
    seed_demo_data: bool = True

    currency: str = "USD"
    tax_rate: Decimal = Decimal("0.12")
    booking_reference_attempts: int = 5
    frontend_url: str = "http://localhost:5173"

    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_base_url: str = "https://api.stripe.com"

    payme_merchant_id: str | None = None
    payme_secret_key: str | None = None
    payme_base_url: str = "https://checkout.paycom.uz"

    click_merchant_id: str | None = None
    click_service_id: str | None = None
    click_secret_key: str | None = None
    click_merchant_user_id: str | None = None
    click_base_url: str = "https://api.click.uz"
    click_pay_url: str = "https://my.click.uz/services/pay"

    def cors_origin_list(self) -> list[str]:
        parsed = [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]
        if "*" in parsed:
            return ["*"]
        return parsed

    def stripe_config(self) -> StripeConfig:
        return StripeConfig(
            secret_key=self.stripe_secret_key or "",
            webhook_secret=self.stripe_webhook_secret or "",
            base_url=self.stripe_base_url,
        )

    def payme_config(self) -> PaymeConfig:
        return PaymeConfig(
            merchant_id=self.payme_merchant_id or "",
            secret_key=self.payme_secret_key or "",
            base_url=self.payme_base_url,
        )

    def click_config(self) -> ClickConfig:
        return ClickConfig(
            merchant_id=self.click_merchant_id or "",
            service_id=self.click_service_id or "",
            secret_key=self.click_secret_key or "",
            merchant_user_id=self.click_merchant_user_id or "",
            base_url=self.click_base_url,
            pay_url=self.click_pay_url,
            return_url=f"{self.frontend_url}/payment/success",
            cancel_url=f"{self.frontend_url}/payment/cancel",
        )


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: str
    base_url: str = "https://api.stripe.com"
    timeout: float = 10.0


@dataclass(frozen=True)
class PaymeConfig:
    merchant_id: str
    secret_key: str
    base_url: str = "https://checkout.paycom.uz"
    currency: str = "UZS"
    language: str = "uz"
    timeout: float = 10.0


@dataclass(frozen=True)
class ClickConfig:
    merchant_id: str
    service_id: str
    secret_key: str
    merchant_user_id: str = ""
    base_url: str = "https://api.click.uz"
    pay_url: str = "https://my.click.uz/services/pay"
    return_url: str = ""
    cancel_url: str = ""
    timeout: float = 10.0


def get_settings() -> Settings:
    return Settings()
