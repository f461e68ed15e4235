"""Plugin loading and built-in derived fields."""

import importlib
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

# A derivation receives the source's plain attributes and the current time,
# and returns a value or None to leave the field out.
Derivation = Callable[[Mapping[str, Any], datetime], Any]

DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%Y_%m_%d", "%d/%m/%Y")


def load_plugin(dotted_path: str) -> Callable:
    """Load a callable from a dotted path.

    Supports two formats:
    - "module.path:function_name" (colon separator)
    - "module.path.function_name" (dot separator, last segment is the function)
    """
    if ":" in dotted_path:
        module_path, func_name = dotted_path.rsplit(":", 1)
    elif "." in dotted_path:
        module_path, func_name = dotted_path.rsplit(".", 1)
    else:
        raise ValueError(f"Plugin path {dotted_path!r} must name a module and a callable")

    module = importlib.import_module(module_path)
    func = getattr(module, func_name)

    if not callable(func):
        raise TypeError(f"Plugin {dotted_path!r} is not callable")

    return func


def coerce_datetime(value: Any) -> datetime | None:
    """Turn a datetime, date or date string into an aware datetime.

    Naive values are taken as UTC. Unparseable values give None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        parsed = _parse_date_string(value.strip())
        if parsed is None:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_date_string(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def days_between(earlier: datetime, later: datetime) -> int:
    return abs((later - earlier).days)


def months_between(earlier: datetime, later: datetime) -> int:
    if earlier > later:
        earlier, later = later, earlier
    months = (later.year - earlier.year) * 12 + (later.month - earlier.month)
    if later.day < earlier.day:
        months -= 1
    return max(months, 0)


def _days_since(key: str) -> Derivation:
    def derive(attrs: Mapping[str, Any], now: datetime) -> int | None:
        moment = coerce_datetime(attrs.get(key))
        return days_between(moment, now) if moment is not None else None
    return derive


def created_months_ago(attrs: Mapping[str, Any], now: datetime) -> int | None:
    created = coerce_datetime(attrs.get("created_at"))
    return months_between(created, now) if created is not None else None


def created_years_ago(attrs: Mapping[str, Any], now: datetime) -> int | None:
    months = created_months_ago(attrs, now)
    return months // 12 if months is not None else None


def email_verified(attrs: Mapping[str, Any], now: datetime) -> bool | None:
    if "email_verified_at" not in attrs:
        return None
    return attrs["email_verified_at"] is not None


BUILTIN_DERIVATIONS: dict[str, Derivation] = {
    "created_days_ago": _days_since("created_at"),
    "created_months_ago": created_months_ago,
    "created_years_ago": created_years_ago,
    "account_age_days": _days_since("created_at"),
    "updated_days_ago": _days_since("updated_at"),
    "last_activity_days": _days_since("updated_at"),
    "email_verified": email_verified,
    "email_verified_days_ago": _days_since("email_verified_at"),
}
