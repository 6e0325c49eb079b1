"""
Policy Store

Read-only access to LeavePolicy rows. Rows are converted to frozen
PolicyConfig snapshots and cached per (leave_type, region) for
POLICY_CACHE_TTL_SECONDS; `invalidate()` drops the cache for hot reload.
"""
import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from leave_engine.core.config import settings
from leave_engine.core.exceptions import PolicyNotFound
from leave_engine.models.employee import Region
from leave_engine.models.leave_policy import LeavePolicy
from leave_engine.schemas.policy import PolicyConfig

logger = logging.getLogger(__name__)

_cache: Dict[Tuple[str, str], Tuple[float, Optional[PolicyConfig]]] = {}
_lock = threading.Lock()


def invalidate() -> None:
    with _lock:
        _cache.clear()
    logger.info("Policy cache invalidated")


def _cached(key: Tuple[str, str]):
    with _lock:
        entry = _cache.get(key)
    if entry is None:
        return False, None
    stored_at, value = entry
    if time.monotonic() - stored_at > settings.policy_cache_ttl_seconds:
        return False, None
    return True, value


def _store(key: Tuple[str, str], value: Optional[PolicyConfig]) -> None:
    with _lock:
        _cache[key] = (time.monotonic(), value)


def _to_config(row: LeavePolicy) -> PolicyConfig:
    try:
        return PolicyConfig.model_validate(row)
    except ValidationError as e:
        logger.error(
            f"Malformed policy {row.leave_type}/{row.region}",
            extra={"policy_id": row.id, "errors": e.errors()},
        )
        raise PolicyNotFound(row.leave_type, row.region, reason="malformed configuration")


def _load(db: Session, leave_type: str, region: str) -> Optional[PolicyConfig]:
    key = (leave_type, region)
    hit, value = _cached(key)
    if hit:
        return value
    row = db.query(LeavePolicy).filter(
        LeavePolicy.leave_type == leave_type,
        LeavePolicy.region == region,
        LeavePolicy.is_active.is_(True),
    ).first()
    value = _to_config(row) if row is not None else None
    _store(key, value)
    return value


def get_policy(db: Session, leave_type: str, region: Optional[str]) -> PolicyConfig:
    """
    Resolve the policy for a leave type in a region, falling back to the
    GLOBAL row when the region has none.

    Raises:
        PolicyNotFound: neither a regional nor a GLOBAL policy is active,
            or the stored row fails validation.
    """
    leave_type = leave_type.upper()
    region = (region or Region.GLOBAL.value).upper()

    policy = _load(db, leave_type, region)
    if policy is None and region != Region.GLOBAL.value:
        policy = _load(db, leave_type, Region.GLOBAL.value)
    if policy is None:
        raise PolicyNotFound(leave_type, region)
    return policy


def policies_for_region(db: Session, region: str, accrual_method: Optional[str] = None) -> List[PolicyConfig]:
    """Effective policies for a region: regional rows override GLOBAL ones of the same type."""
    region = region.upper()
    rows = db.query(LeavePolicy).filter(
        LeavePolicy.region.in_([region, Region.GLOBAL.value]),
        LeavePolicy.is_active.is_(True),
    ).order_by(LeavePolicy.leave_type).all()

    effective: Dict[str, LeavePolicy] = {}
    for row in rows:
        current = effective.get(row.leave_type)
        if current is None or row.region == region:
            effective[row.leave_type] = row

    # Filter after the override so a regional row can switch a GLOBAL method off
    return [
        _to_config(row) for row in effective.values()
        if accrual_method is None or row.accrual_method == accrual_method
    ]
