import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _csv_env(name: str, default: str) -> List[str]:
    return [v.strip().upper() for v in os.getenv(name, default).split(",") if v.strip()]


class SchedulerSettings(BaseModel):
    # Regions whose employees receive the monthly pro-rated grant
    monthly_accrual_regions: List[str] = Field(
        default_factory=lambda: _csv_env("MONTHLY_ACCRUAL_REGIONS", "INDIA")
    )
    # Regions whose employees receive a lump annual allocation; India staff
    # still hold annual-method GLOBAL types such as SICK_LEAVE
    annual_allocation_regions: List[str] = Field(
        default_factory=lambda: _csv_env("ANNUAL_ALLOCATION_REGIONS", "INDIA,USA")
    )


class Config(BaseModel):
    app_name: str = "Leave Accounting Engine"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./leave_engine.db")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Policy store
    policy_cache_ttl_seconds: int = int(os.getenv("POLICY_CACHE_TTL_SECONDS", "300"))

    # Ledger
    ledger_max_retries: int = int(os.getenv("LEDGER_MAX_RETRIES", "3"))

    # Approvals
    hr_approver_role: str = os.getenv("HR_APPROVER_ROLE", "HR_ADMIN")

    scheduler: SchedulerSettings = SchedulerSettings()

    # Enterprise Architecture
    version: str = "1.0.0"
    build_id: str = os.getenv("BUILD_ID", "local")
    request_id_header: str = "X-Request-ID"
    actor_id_header: str = "X-Employee-ID"
    cors_origins: List[str] = Field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
    )

    # Feature Flags
    seed_default_policies: bool = os.getenv("SEED_DEFAULT_POLICIES", "true").lower() == "true"
    enable_admin_triggers: bool = os.getenv("ENABLE_ADMIN_TRIGGERS", "true").lower() == "true"


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if settings.database_url.startswith("sqlite"):
        _logger.warning("⚠ Using SQLite outside development; ledger row locks are not enforced.")
