"""
Static lookups between helpdesk display names and Odoo values.

Categories map display names to ``ticket_category`` selection codes in both
directions. Stages map the four workflow names to ``stage_id`` integers.
"""

from typing import Annotated, Dict, Literal, Mapping, Optional

from pydantic import AfterValidator

from .errors import InputValidationError

CATEGORY_CODES: Dict[str, str] = {
    "Product/Service Issues & Requests": "product_issue",
    "Billing & Subscription Issues": "billing_issue",
    "General Inquiries & Admin Issues": "general_inq",
    "Incident Reports": "theft_or_acc",
    "Subscription Cancellation": "subscription_issue",
}

_CATEGORY_BY_LOWER = {name.lower(): name for name in CATEGORY_CODES}
_NAME_BY_CODE = {code: name for name, code in CATEGORY_CODES.items()}

StageName = Literal["New", "In Progress", "Waiting on Customer", "Solved"]

DEFAULT_STAGE_IDS: Dict[str, int] = {
    "New": 25,
    "In Progress": 26,
    "Waiting on Customer": 35,
    "Solved": 27,
}


def canonical_category(name: Optional[str]) -> Optional[str]:
    """Return the canonical display name for ``name``, ignoring case."""
    if not name:
        return None
    return _CATEGORY_BY_LOWER.get(name.strip().lower())


def resolve_category(name: Optional[str]) -> Optional[str]:
    """Map a display name (any casing) to its Odoo code, or None if unknown."""
    canonical = canonical_category(name)
    return CATEGORY_CODES[canonical] if canonical else None


def unresolve_category(code: Optional[str]) -> Optional[str]:
    """Map an Odoo code back to its display name, or None if unknown or empty."""
    if not code:
        return None
    return _NAME_BY_CODE.get(code)


def require_category_code(name: str) -> str:
    """Resolve a category display name or fail.

    Raises:
        InputValidationError: If ``name`` is not one of the five categories
    """
    code = resolve_category(name)
    if code is None:
        choices = ", ".join(CATEGORY_CODES)
        raise InputValidationError(f"Unknown category_name '{name}'. Valid categories: {choices}")
    return code


def stage_id_for(stage: str, stage_ids: Mapping[str, int] = DEFAULT_STAGE_IDS) -> int:
    # Stage names are validated by the tool schemas; a miss here is a bug.
    return stage_ids[stage]


def _validate_category_name(value: str) -> str:
    canonical = canonical_category(value)
    if canonical is None:
        raise ValueError(f"must be one of: {', '.join(CATEGORY_CODES)}")
    return canonical


CategoryName = Annotated[str, AfterValidator(_validate_category_name)]
