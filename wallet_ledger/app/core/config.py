from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Wallet Ledger API"
    database_url: str = "sqlite:///wallet_ledger.db"
    log_level: str = "INFO"
    currency: str = "NGN"

    # Transaction PIN
    pin_length: int = 4
    pin_max_attempts: int = 5
    pin_lock_minutes: int = 30
    pin_hash_method: str = "scrypt"
    require_pin_for_purchases: bool = False

    # Purchase limits, in kobo
    min_transaction_amount: int = 5_000
    max_transaction_amount: int = 50_000_000

    # Maskawa VTU provider
    maskawa_base_url: str = "https://maskawasub.com"
    maskawa_token: Optional[str] = None
    provider_timeout_seconds: float = 30.0

    # Flutterwave payment gateway
    flutterwave_base_url: str = "https://api.flutterwave.com/v3"
    flutterwave_secret_key: Optional[str] = None
    flutterwave_secret_hash: Optional[str] = None

    # Referrals
    referral_code_prefix: str = "haaman"
    referral_reward_enabled: bool = True
    referral_reward_count: int = 5
    referral_reward_data_size: str = "1GB"
    referral_reward_network: str = "mtn"
    referral_reward_airtime_amount: int = 50_000
    referral_reward_cash_amount: int = 50_000
    referral_invite_cap: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WALLET_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
