"""
Placeholder substitution for contract SMS templates.

Templates use bracketed tokens such as `[customer_name]` or `[Price]`.
Only the placeholders listed in PLACEHOLDERS are recognised; anything else,
and any recognised placeholder without a value, is left exactly as written.
"""

from datetime import date
from typing import Mapping, Optional

DATE_FORMAT = "%d.%m.%Y"

# value key -> accepted token spellings
PLACEHOLDERS = {
    "price": ("[price]", "[Price]"),
    "customer_name": ("[customer_name]", "[Customer_name]"),
    "product_name": ("[product_name]", "[Product_name]"),
    "company_name": ("[company_name]", "[Company]"),
    "orgnr": ("[orgnr]", "[Orgnr]"),
    "terms": ("[terms]", "[Terms]"),
    "date": ("[date]", "[Date]"),
    "phone": ("[phone]", "[Phone]"),
    "email": ("[email]", "[Email]"),
}

# Alternate value keys callers send in template data
VALUE_ALIASES = {
    "price": "Price",
    "customer_name": "Customer",
    "company_name": "Company",
    "orgnr": "Orgnr",
    "terms": "Terms",
}


def _lookup(values: Mapping[str, object], key: str) -> Optional[str]:
    value = values.get(key)
    if not value and key in VALUE_ALIASES:
        value = values.get(VALUE_ALIASES[key])
    if value is None or value == "":
        return None
    return str(value)


def render(template: str, values: Optional[Mapping[str, object]] = None, today: Optional[date] = None) -> str:
    """
    Substitute every recognised placeholder that has a value.

    `[date]` falls back to today's local date when no value is given.
    """
    values = values or {}
    rendered = template
    for key, tokens in PLACEHOLDERS.items():
        value = _lookup(values, key)
        if value is None and key == "date":
            value = (today or date.today()).strftime(DATE_FORMAT)
        if value is None:
            continue
        for token in tokens:
            rendered = rendered.replace(token, value)
    return rendered
