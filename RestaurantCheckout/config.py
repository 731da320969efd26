"""Runtime configuration.

Settings are read from the process environment; a ``.env`` file in the working
directory is loaded first when present.
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class CheckoutTimings(BaseModel):
    """Timing constants of the checkout flow, in milliseconds."""
    guest_floor_ms: int = Field(3000, ge=0, description="Minimum submit duration before a guest navigates")
    registered_floor_ms: int = Field(2000, ge=0, description="Minimum submit duration before a registered user navigates")
    guest_redirect_ms: int = Field(15000, ge=0, description="Confirmation screen redirect window for guests")
    guest_whatsapp_delay_ms: int = Field(4000, ge=0)
    registered_redirect_ms: int = Field(30000, ge=0, description="Confirmation screen redirect window for registered users")
    registered_whatsapp_delay_ms: int = Field(12000, ge=0)
    upsell_show_delay_ms: int = Field(160, ge=0, description="Delay between blur-and-scroll and showing the prompt")
    upsell_show_delay_no_scroll_ms: int = Field(60, ge=0)
    focus_resume_delay_ms: int = Field(120, ge=0)
    restored_profile_upsell_ms: int = Field(3000, ge=0)


class Settings(BaseModel):
    api_url: str = Field("http://localhost:3000", description="Base URL of the ordering API")
    api_key: Optional[str] = Field(None, description="Sent as x-api-key when set")
    whatsapp_number: str = Field("+5491130623998", description="Store number receiving order messages")
    storage_path: str = Field(".checkout-storage.json", description="File backing the local key-value store")
    storage_poll_ms: int = Field(1000, ge=0, description="How often the store file is re-read for external changes, 0 disables")
    http_timeout: float = Field(10.0, gt=0)
    log_level: str = "INFO"
    log_json: bool = True
    timings: CheckoutTimings = Field(default_factory=CheckoutTimings)


def load_settings(env_file: Optional[str] = None) -> Settings:
    load_dotenv(env_file)
    values = {
        "api_url": os.getenv("CHECKOUT_API_URL"),
        "api_key": os.getenv("CHECKOUT_API_KEY") or None,
        "whatsapp_number": os.getenv("CHECKOUT_WHATSAPP_NUMBER"),
        "storage_path": os.getenv("CHECKOUT_STORAGE_PATH"),
        "storage_poll_ms": os.getenv("CHECKOUT_STORAGE_POLL_MS"),
        "http_timeout": os.getenv("CHECKOUT_HTTP_TIMEOUT"),
        "log_level": os.getenv("CHECKOUT_LOG_LEVEL"),
        "log_json": os.getenv("CHECKOUT_LOG_JSON"),
    }
    return Settings(**{key: value for key, value in values.items() if value is not None})
