"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so payment knobs can be overridden
with the ``PAYMENT__`` prefix, e.g. ``PAYMENT__QRIS__BASE_AMOUNT=75000``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, model_validator


class QrisSettings(BaseModel):
    provider: str = "QRIS"
    currency: str = "IDR"
    # 基础金额（最小货币单位），实际金额 = 基础金额 + 唯一码
    base_amount: int = 50000
    unique_code_min: int = 100
    unique_code_max: int = 999
    order_prefix: str = "QRIS"

    @model_validator(mode="after")
    def _check_code_range(self):
        if self.unique_code_min < 0 or self.unique_code_max < self.unique_code_min:
            raise ValueError("unique code range is invalid")
        return self


class WebhookSettings(BaseModel):
    # Optional shared token, sent by the provider as X-Webhook-Token
    token: Optional[str] = None
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class ReconciliationSettings(BaseModel):
    # 为 True 时，已关闭(CLOSED)的工单不会被支付回调重新打开
    protect_closed_tickets: bool = False


class PostPaymentTimeouts(BaseModel):
    load_ticket: float = 10.0
    create_folder: float = 15.0
    upload_file: float = 30.0
    sync_sheet: float = 15.0
    notify: float = 20.0


class AppsScriptSettings(BaseModel):
    base_url: Optional[str] = None
    sync_secret: Optional[str] = None
    timeout: float = 10.0
    max_retries: int = 2


class WhatsAppSettings(BaseModel):
    gateway_url: Optional[str] = None
    api_token: Optional[str] = None
    team_number: Optional[str] = None
    max_retries: int = 3
    retry_base_delay: float = 1.0
    timeout: float = 10.0
    dashboard_base_url: str = "http://localhost:3000"


class DraftSettings(BaseModel):
    max_age_hours: int = 24
    batch_size: int = 200
    cleanup_interval_seconds: int = 3600


class PaymentSettings(BaseSettings):
    qris: QrisSettings = Field(default_factory=QrisSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    timeouts: PostPaymentTimeouts = Field(default_factory=PostPaymentTimeouts)
    apps_script: AppsScriptSettings = Field(default_factory=AppsScriptSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    drafts: DraftSettings = Field(default_factory=DraftSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
