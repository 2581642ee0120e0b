"""
Conversation Engine - Formatters
================================

Display helpers for entity values and records.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from conversation_engine.models import EntityField, FieldType

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
}


def format_currency(value: Any, currency: str = "USD") -> str:
    if value is None:
        return "-"
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return str(value)
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return f"{symbol}{amount:,.2f}"


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def format_date(value: Any, style: str = "short") -> str:
    """`short` → "Jan 5, 2025", `long` → "Sunday, January 5, 2025", `iso` → "2025-01-05"."""
    parsed = _parse_date(value)
    if parsed is None:
        return "-"
    if style == "iso":
        return parsed.isoformat()
    if style == "long":
        return f"{parsed:%A}, {parsed:%B} {parsed.day}, {parsed.year}"
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def format_phone(value: Any) -> str:
    if not value:
        return "-"
    text = str(value)
    digits = re.sub(r"\D", "", text)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+1-{digits[1:4]}-{digits[4:7]}-{digits[7:]}"
    return text


def format_boolean(value: Any) -> str:
    if value is None:
        return "-"
    return "Yes" if value else "No"


def group_title(group: str) -> str:
    return group[:1].upper() + group[1:]


def format_field_value(value: Any, field_type: FieldType = FieldType.TEXT) -> str:
    if value is None:
        return "-"
    field_type = FieldType(field_type)
    if field_type == FieldType.CURRENCY:
        return format_currency(value)
    if field_type == FieldType.DATE:
        return format_date(value)
    if field_type == FieldType.PHONE:
        return format_phone(value)
    if field_type == FieldType.CHECKBOX:
        return format_boolean(value)
    return str(value)


def group_in_order(fields: Iterable[Any]) -> Dict[str, List[Any]]:
    """Bucket fields by `group`, groups ordered by first declaration."""
    groups: Dict[str, List[Any]] = {}
    for field in fields:
        groups.setdefault(field.group, []).append(field)
    return groups


def format_entity_detailed(entity: Dict[str, Any], fields: List[EntityField], title: str) -> str:
    """Group-ordered detail view. Unset values are omitted."""
    lines = [f"**{title}**", ""]
    for group, group_fields in group_in_order(fields).items():
        rows = [
            f"{f.display_label}: {format_field_value(entity.get(f.name), f.type)}"
            for f in group_fields
            if entity.get(f.name) not in (None, "")
        ]
        if not rows:
            continue
        lines.append(f"### {group_title(group)}")
        lines.extend(rows)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
