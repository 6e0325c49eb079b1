import logging
from leave_engine.core.config import settings
from leave_engine.database import SessionLocal
from leave_engine.models.leave_policy import LeavePolicy, LeaveType, AccrualMethod, RoundingMethod
from leave_engine.models.employee import Region
from leave_engine.services import policy_store

logger = logging.getLogger(__name__)

SENIOR_DESIGNATIONS = ["VP", "SVP", "EVP", "CEO", "CTO", "CFO", "COO"]

DEFAULT_POLICIES = [
    # India: monthly accrual, casual leave lapses at year end
    dict(
        leave_type=LeaveType.CASUAL_LEAVE.value, region=Region.INDIA.value,
        annual_entitlement=12, accrual_method=AccrualMethod.MONTHLY.value, accrual_rate=1.0,
        carry_forward_allowed=False, max_consecutive_days=3, min_gap_days=0,
        auto_approve=True, auto_approve_max_days=1,
    ),
    dict(
        leave_type=LeaveType.EARNED_LEAVE.value, region=Region.INDIA.value,
        annual_entitlement=12, accrual_method=AccrualMethod.MONTHLY.value, accrual_rate=1.0,
        carry_forward_allowed=True, max_carry_forward=30, min_advance_notice_days=7,
    ),
    # USA: lump PTO by designation, seniors carry nothing
    dict(
        leave_type=LeaveType.PTO.value, region=Region.USA.value,
        annual_entitlement=15, accrual_method=AccrualMethod.ANNUAL.value,
        rounding=RoundingMethod.NEAREST.value,
        designation_tiers=[
            {"designations": SENIOR_DESIGNATIONS, "days": 20, "max_carry_forward": 0},
            {"designations": [], "days": 15, "max_carry_forward": 5},
        ],
        carry_forward_allowed=True, max_carry_forward=5,
    ),
    # Everywhere
    dict(
        leave_type=LeaveType.SICK_LEAVE.value, region=Region.GLOBAL.value,
        annual_entitlement=12, accrual_method=AccrualMethod.ANNUAL.value,
        rounding=RoundingMethod.HALF_DAY.value, documentation_threshold=3, backdate_limit_days=30,
    ),
    dict(
        leave_type=LeaveType.MATERNITY_LEAVE.value, region=Region.GLOBAL.value,
        annual_entitlement=182, accrual_method=AccrualMethod.ANNUAL.value,
        eligible_genders=["FEMALE"], min_tenure_months=6, documentation_threshold=1,
        min_advance_notice_days=30,
    ),
    dict(
        leave_type=LeaveType.PATERNITY_LEAVE.value, region=Region.GLOBAL.value,
        annual_entitlement=5, accrual_method=AccrualMethod.ANNUAL.value,
        eligible_genders=["MALE"], eligible_marital_statuses=["MARRIED"], max_consecutive_days=5,
    ),
    dict(
        leave_type=LeaveType.BEREAVEMENT_LEAVE.value, region=Region.GLOBAL.value,
        annual_entitlement=3, accrual_method=AccrualMethod.ANNUAL.value, max_consecutive_days=3,
    ),
    dict(
        leave_type=LeaveType.MARRIAGE_LEAVE.value, region=Region.GLOBAL.value,
        annual_entitlement=5, accrual_method=AccrualMethod.ANNUAL.value,
        eligible_marital_statuses=["SINGLE"], min_advance_notice_days=14,
    ),
    dict(
        leave_type=LeaveType.COMPENSATORY_OFF.value, region=Region.GLOBAL.value,
        accrual_method=AccrualMethod.NONE.value,
        comp_off_min_hours=5, comp_off_max_hours=12, comp_off_half_day_hours=5,
        comp_off_full_day_hours=8, comp_off_expiry_months=3, comp_off_max_log_age_days=30,
    ),
    dict(
        leave_type=LeaveType.LEAVE_WITHOUT_PAY.value, region=Region.GLOBAL.value,
        accrual_method=AccrualMethod.NONE.value,
        allow_negative_balance=True, negative_balance_limit=30,
    ),
]


def seed_default_policies(db) -> int:
    """Insert any missing default policy rows. Existing rows are never overwritten."""
    created = 0
    for values in DEFAULT_POLICIES:
        exists = db.query(LeavePolicy).filter(
            LeavePolicy.leave_type == values["leave_type"],
            LeavePolicy.region == values["region"],
        ).first()
        if exists:
            continue
        db.add(LeavePolicy(**values))
        created += 1
    db.commit()
    if created:
        policy_store.invalidate()
    return created


def init_system_data():
    """
    Checks whether the policy table needs its defaults.
    Skipped when SEED_DEFAULT_POLICIES is false.
    """
    if not settings.seed_default_policies:
        logger.info("Default policy seeding disabled")
        return
    db = SessionLocal()
    try:
        created = seed_default_policies(db)
        if created:
            logger.info(f"✓ Seeded {created} default leave policies")
        else:
            logger.info("System initialization check: leave policies present")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
    finally:
        db.close()
