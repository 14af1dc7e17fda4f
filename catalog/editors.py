"""
Editor hints: which input a cell of a given column gets, and the options
for select-style columns. Pure lookups over field key and data type.
"""

from catalog.models import DataType
from store.config import STATUS_OPTIONS

DATE = "date"
SELECT = "select"
TEXTAREA = "textarea"
TEXT = "text"

PRIORITY_OPTIONS = ["Build Now", "Build Next", "On Hold"]

QUARTER_OPTIONS = [
    f"Q{q} {year}" for year in (2024, 2025, 2026) for q in (1, 2, 3, 4)
] + ["TBD"]

IMPACT_EFFORT_OPTIONS = [
    f"{impact} / {effort}"
    for impact in ("High", "Medium", "Low")
    for effort in ("High", "Medium", "Low")
]

DEV_STATUS_OPTIONS = [
    "Not started",
    "Dev In progress",
    "Design In progress",
    "Design In progress, Dev In progress",
    "Completed",
    "Completed, PROD LIVE",
    "Completed, PROD LIVE, VoC In Progress",
    "Completed, PROD LIVE, VoC Completed",
    "Backlog",
]

RISK_LEVEL_OPTIONS = ["Low", "Medium", "High", "Critical"]

_OPTIONS = {
    "status": STATUS_OPTIONS,
    "priority": PRIORITY_OPTIONS,
    "impact_effort": IMPACT_EFFORT_OPTIONS,
    "quarter_due": QUARTER_OPTIONS,
    "dev_status": DEV_STATUS_OPTIONS,
    "risk_level": RISK_LEVEL_OPTIONS,
}

_TEXTAREA_FIELDS = {
    "objective", "deliverables", "outcomes", "notes", "dependencies",
    "tags_labels", "epic_theme", "business_value_roi", "customer_impact",
    "external_links",
}


def editor_kind(field_key, data_type=DataType.TEXT):
    """date | select | textarea | text for one column."""
    if DataType(data_type) is DataType.DATE or "date" in field_key.lower():
        return DATE
    if field_key in _OPTIONS:
        return SELECT
    if field_key in _TEXTAREA_FIELDS:
        return TEXTAREA
    return TEXT


def options_for(field_key):
    """Option list for a select column, or None."""
    options = _OPTIONS.get(field_key)
    return list(options) if options is not None else None
