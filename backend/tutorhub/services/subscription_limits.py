"""
Subscription tier limits: student/staff ceilings and module access
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..exceptions import DowngradeBlockedError, EntityNotFoundError, LimitExceededError
from ..models.center import TutorialCenter
from ..models.student import Student
from ..models.user import User

logger = logging.getLogger(__name__)

UNLIMITED = -1

TIER_ORDER = ("micro", "starter", "standard", "premium")
DEFAULT_TIER = "starter"

CORE_MODULES = ("attendance", "grades", "classes", "timetable")
STANDARD_MODULES = ("report_cards", "student_portal", "teacher_portal", "library", "sms")
PREMIUM_MODULES = ("hostel", "transport")
MODULES = CORE_MODULES + STANDARD_MODULES + PREMIUM_MODULES

# Modules that also need the center's own enable flag
MODULE_FLAGS = {
    "hostel": "hostel_module_enabled",
    "transport": "transport_module_enabled",
    "library": "library_module_enabled",
    "sms": "sms_module_enabled",
}


def _modules(*groups) -> dict:
    enabled = {module for group in groups for module in group}
    return {module: module in enabled for module in MODULES}


PLAN_LIMITS = {
    "micro": {
        "max_students": 15,
        "max_staff": 0,  # solo operator, center admin only
        "modules": _modules(CORE_MODULES),
    },
    "starter": {
        "max_students": 50,
        "max_staff": 2,
        "modules": _modules(CORE_MODULES),
    },
    "standard": {
        "max_students": 150,
        "max_staff": 5,
        "modules": _modules(CORE_MODULES, STANDARD_MODULES),
    },
    "premium": {
        "max_students": UNLIMITED,
        "max_staff": UNLIMITED,
        "modules": _modules(CORE_MODULES, STANDARD_MODULES, PREMIUM_MODULES),
    },
}


@dataclass
class LimitCheck:
    can_add: bool
    current: int
    limit: int
    tier: str
    remaining: int
    percent_used: int
    is_near_limit: bool
    is_at_limit: bool

    def to_dict(self) -> dict:
        return {
            "canAdd": self.can_add,
            "current": self.current,
            "limit": self.limit,
            "tier": self.tier,
            "remaining": self.remaining,
            "percentUsed": self.percent_used,
            "isNearLimit": self.is_near_limit,
            "isAtLimit": self.is_at_limit,
        }


@dataclass
class ModuleAccessCheck:
    has_access: bool
    tier: str
    required_tier: Optional[str]
    is_enabled: bool
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "hasAccess": self.has_access,
            "tier": self.tier,
            "requiredTier": self.required_tier,
            "isEnabled": self.is_enabled,
            "reason": self.reason,
        }


def normalize_tier(tier: Optional[str]) -> str:
    return tier if tier in PLAN_LIMITS else DEFAULT_TIER


def tier_rank(tier: str) -> int:
    return TIER_ORDER.index(normalize_tier(tier))


def format_limit(limit: int) -> str:
    return "Unlimited" if limit == UNLIMITED else str(limit)


def _build_check(current: int, limit: int, tier: str) -> LimitCheck:
    if limit == UNLIMITED:
        return LimitCheck(
            can_add=True, current=current, limit=UNLIMITED, tier=tier,
            remaining=UNLIMITED, percent_used=0, is_near_limit=False, is_at_limit=False
        )

    percent_used = 100.0 if limit == 0 else current / limit * 100
    return LimitCheck(
        can_add=current < limit,
        current=current,
        limit=limit,
        tier=tier,
        remaining=max(0, limit - current),
        percent_used=round(percent_used),
        is_near_limit=percent_used >= 80,
        is_at_limit=current >= limit
    )


def get_center_tier(db: Session, center_id: str) -> str:
    center = db.query(TutorialCenter).filter(TutorialCenter.id == center_id).first()
    return normalize_tier(center.subscription_tier if center else None)


def count_active_students(db: Session, center_id: str) -> int:
    return db.query(func.count(Student.id)).filter(
        Student.center_id == center_id,
        Student.status == "active"
    ).scalar() or 0


def count_active_staff(db: Session, center_id: str) -> int:
    """Active center_staff users; the center admin is not counted"""
    return db.query(func.count(User.id)).filter(
        User.center_id == center_id,
        User.role == "center_staff",
        User.is_active == True
    ).scalar() or 0


def check_student_limit(db: Session, center_id: str) -> LimitCheck:
    tier = get_center_tier(db, center_id)
    return _build_check(count_active_students(db, center_id), PLAN_LIMITS[tier]["max_students"], tier)


def check_staff_limit(db: Session, center_id: str) -> LimitCheck:
    tier = get_center_tier(db, center_id)
    return _build_check(count_active_staff(db, center_id), PLAN_LIMITS[tier]["max_staff"], tier)


def get_required_tier_for_module(module: str) -> str:
    for tier in TIER_ORDER:
        if PLAN_LIMITS[tier]["modules"].get(module):
            return tier
    return "premium"


def tier_includes_module(tier: str, module: str) -> bool:
    return PLAN_LIMITS.get(tier, {}).get("modules", {}).get(module, False)


def check_module_access(db: Session, center_id: str, module: str) -> ModuleAccessCheck:
    """The tier must include the module, and flagged modules must also be switched on"""
    if module not in MODULES:
        raise ValueError(f"Unknown module: {module}")

    center = db.query(TutorialCenter).filter(TutorialCenter.id == center_id).first()
    if center is None:
        return ModuleAccessCheck(
            has_access=False, tier=DEFAULT_TIER, required_tier=None,
            is_enabled=False, reason="Center not found"
        )

    tier = normalize_tier(center.subscription_tier)
    tier_allows = tier_includes_module(tier, module)
    flag = MODULE_FLAGS.get(module)
    is_enabled = bool(getattr(center, flag)) if flag else True
    required_tier = get_required_tier_for_module(module)

    reason = None
    if not tier_allows:
        reason = f"This feature requires the {required_tier.capitalize()} plan or higher"
    elif not is_enabled:
        reason = "This module is not enabled for your center. Contact support to enable it."

    return ModuleAccessCheck(
        has_access=tier_allows and is_enabled,
        tier=tier,
        required_tier=required_tier,
        is_enabled=is_enabled,
        reason=reason
    )


def get_student_limit_message(check: LimitCheck) -> Optional[str]:
    if check.limit == UNLIMITED:
        return None
    if check.is_at_limit:
        return f"You've reached your {check.tier} plan limit of {check.limit} students. Upgrade to add more students."
    if check.is_near_limit:
        return f"You're using {check.percent_used}% of your {check.limit} student limit. Consider upgrading soon."
    return None


def get_staff_limit_message(check: LimitCheck) -> Optional[str]:
    if check.limit == UNLIMITED:
        return None
    if check.limit == 0:
        return "Your Micro plan does not include additional staff. Upgrade to Starter to add staff members."
    if check.is_at_limit:
        return f"You've reached your {check.tier} plan limit of {check.limit} staff members. Upgrade to add more."
    return None


def enforce_student_limit(db: Session, center_id: str) -> LimitCheck:
    check = check_student_limit(db, center_id)
    if not check.can_add:
        raise LimitExceededError(get_student_limit_message(check), check.to_dict())
    return check


def enforce_staff_limit(db: Session, center_id: str) -> LimitCheck:
    check = check_staff_limit(db, center_id)
    if not check.can_add:
        message = get_staff_limit_message(check) or "Staff limit reached"
        raise LimitExceededError(message, check.to_dict())
    return check


def validate_downgrade(db: Session, center_id: str, target_tier: str) -> int:
    """
    Refuse a downgrade the center's active staff would not fit into.

    Nothing is deactivated or persisted here. Returns the active staff count.

    Raises:
        ValueError: unknown tier
        EntityNotFoundError: center does not exist
        DowngradeBlockedError: staff must be deactivated first
    """
    if target_tier not in PLAN_LIMITS:
        raise ValueError(f"Invalid tier: {target_tier}")

    center = db.query(TutorialCenter).filter(TutorialCenter.id == center_id).first()
    if center is None:
        raise EntityNotFoundError("Center not found")

    staff_limit = PLAN_LIMITS[target_tier]["max_staff"]
    staff_count = count_active_staff(db, center_id)

    if staff_limit != UNLIMITED and staff_count > staff_limit:
        plan_name = target_tier.capitalize()
        if staff_limit == 0:
            message = f"Deactivate all {staff_count} staff members before downgrading to {plan_name}"
        else:
            message = f"Deactivate {staff_count - staff_limit} staff members before downgrading to {plan_name}"
        logger.info(f"Downgrade of center {center_id} to {target_tier} blocked: {staff_count} active staff, limit {staff_limit}")
        raise DowngradeBlockedError(message, staff_count, staff_limit, target_tier)

    return staff_count
