"""Action classification - maps an action code to (category, severity).

The rule table is a versioned constant. Classification is a pure, total
function over it: unknown actions fall back to (user, low).
"""

from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional

from auditgate.models.enums import Category, ResourceType, Severity


class ClassificationRule(NamedTuple):
    category: Category
    severity: Severity


CLASSIFICATION_TABLE_VERSION = 1

DEFAULT_RULE = ClassificationRule(Category.USER, Severity.LOW)

_S, _A, _Y, _U = Category.SECURITY, Category.ADMIN, Category.SYSTEM, Category.USER
_LOW, _MED, _HIGH, _CRIT = Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL

CLASSIFICATION_RULES: Mapping[str, ClassificationRule] = MappingProxyType(
    {
        # Security
        "login_success": ClassificationRule(_S, _LOW),
        "login_failed": ClassificationRule(_S, _HIGH),
        "logout": ClassificationRule(_S, _LOW),
        "password_changed": ClassificationRule(_S, _LOW),
        "brute_force_attempt": ClassificationRule(_S, _CRIT),
        "suspicious_activity": ClassificationRule(_S, _CRIT),
        # User administration
        "user_created": ClassificationRule(_A, _LOW),
        "user_updated": ClassificationRule(_A, _LOW),
        "user_deleted": ClassificationRule(_A, _CRIT),
        "user_status_changed": ClassificationRule(_A, _MED),
        "user_role_changed": ClassificationRule(_A, _MED),
        # Company administration
        "company_created": ClassificationRule(_A, _LOW),
        "company_updated": ClassificationRule(_A, _MED),
        "company_deleted": ClassificationRule(_A, _CRIT),
        "company_suspended": ClassificationRule(_A, _CRIT),
        "company_activated": ClassificationRule(_A, _LOW),
        # Departments
        "department_created": ClassificationRule(_A, _LOW),
        "department_updated": ClassificationRule(_A, _LOW),
        "department_deleted": ClassificationRule(_A, _MED),
        # Subscriptions and plans
        "subscription_created": ClassificationRule(_A, _LOW),
        "subscription_updated": ClassificationRule(_A, _LOW),
        "subscription_cancelled": ClassificationRule(_A, _MED),
        "plan_created": ClassificationRule(_A, _MED),
        "plan_updated": ClassificationRule(_A, _MED),
        "plan_deleted": ClassificationRule(_A, _HIGH),
        "plan_upgraded": ClassificationRule(_A, _LOW),
        "plan_downgraded": ClassificationRule(_A, _HIGH),
        # Platform administration
        "admin_login": ClassificationRule(_A, _LOW),
        "admin_action": ClassificationRule(_A, _MED),
        "bulk_operation": ClassificationRule(_A, _HIGH),
        "system_config_changed": ClassificationRule(_A, _CRIT),
        # System
        "system_backup": ClassificationRule(_Y, _LOW),
        "system_maintenance": ClassificationRule(_Y, _LOW),
        "data_export": ClassificationRule(_Y, _LOW),
        # Everyday user activity
        "user_login": ClassificationRule(_U, _LOW),
        "user_logout": ClassificationRule(_U, _LOW),
        "user_password_reset": ClassificationRule(_U, _LOW),
        "profile_updated": ClassificationRule(_U, _LOW),
        "settings_changed": ClassificationRule(_U, _LOW),
        "task_created": ClassificationRule(_U, _LOW),
        "task_updated": ClassificationRule(_U, _LOW),
        "task_deleted": ClassificationRule(_U, _MED),
        "task_status_changed": ClassificationRule(_U, _LOW),
        "task_assigned": ClassificationRule(_U, _LOW),
        "meeting_created": ClassificationRule(_U, _LOW),
        "meeting_updated": ClassificationRule(_U, _LOW),
        "meeting_deleted": ClassificationRule(_U, _LOW),
        "meeting_scheduled": ClassificationRule(_U, _LOW),
        "meeting_attended": ClassificationRule(_U, _LOW),
        "meeting_cancelled": ClassificationRule(_U, _LOW),
        "leave_requested": ClassificationRule(_U, _LOW),
        "leave_approved": ClassificationRule(_U, _LOW),
        "leave_rejected": ClassificationRule(_U, _LOW),
        "leave_cancelled": ClassificationRule(_U, _LOW),
        "payment_processed": ClassificationRule(_U, _LOW),
        "payment_failed": ClassificationRule(_U, _HIGH),
    }
)

# Action prefix -> resource the action touches
_RESOURCE_PREFIXES: tuple[tuple[str, ResourceType], ...] = (
    ("user_", ResourceType.USER),
    ("company_", ResourceType.COMPANY),
    ("department_", ResourceType.DEPARTMENT),
    ("task_", ResourceType.TASK),
    ("meeting_", ResourceType.MEETING),
    ("leave_", ResourceType.LEAVE),
    ("subscription_", ResourceType.SUBSCRIPTION),
    ("plan_", ResourceType.SUBSCRIPTION),
    ("payment_", ResourceType.PAYMENT),
    ("system_", ResourceType.SYSTEM),
)


def classify(action: str, override: Optional[ClassificationRule] = None) -> ClassificationRule:
    """Return the override verbatim, else the table's rule, else (user, low)."""
    if override is not None:
        return override
    return CLASSIFICATION_RULES.get(action, DEFAULT_RULE)


def resolve_classification(
    action: str,
    category: Optional[Category | str] = None,
    severity: Optional[Severity | str] = None,
) -> ClassificationRule:
    """
    Classify a producer's action.

    Explicit category and severity override the table only as a pair; a
    single supplied value is ignored. Raises ValueError for unknown values.
    """
    override = None
    if category is not None and severity is not None:
        override = ClassificationRule(Category(category), Severity(severity))
    return classify(action, override)


def resource_type_for(action: str) -> Optional[ResourceType]:
    """Resource type implied by an action code, if any."""
    for prefix, resource_type in _RESOURCE_PREFIXES:
        if action.startswith(prefix):
            return resource_type
    return None


def device_from_user_agent(user_agent: str) -> str:
    """Coarse device class from a User-Agent header."""
    if not user_agent:
        return "Unknown"
    if any(marker in user_agent for marker in ("Mobile", "Android", "iPhone")):
        return "Mobile"
    if any(marker in user_agent for marker in ("Tablet", "iPad")):
        return "Tablet"
    return "Desktop"
