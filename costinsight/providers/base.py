import datetime as dt
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Tuple

from ..errors import InvalidCostParameters


class CostProvider(ABC):
    """A cloud billing API that can answer a fetch-cost request.

    ``params`` is the request body as the client sent it, discriminator
    included; each provider picks out the fields it understands.
    """

    name: str = ""

    @abstractmethod
    def fetch_costs(self, params: Mapping[str, Any]) -> Any:
        ...


def _parse_date(value: Any, field: str) -> dt.date:
    if not isinstance(value, str):
        raise InvalidCostParameters(f"{field} must be an ISO date string (YYYY-MM-DD)")
    try:
        return dt.date.fromisoformat(value[:10])
    except ValueError:
        raise InvalidCostParameters(f"{field} is not a valid date: {value!r}") from None


def parse_period(params: Mapping[str, Any], default_days: int) -> Tuple[dt.date, dt.date]:
    """Return ``(start, end)`` with ``end`` exclusive.

    Missing bounds default to the ``default_days`` window ending today.
    """
    raw_start = params.get("startDate")
    raw_end = params.get("endDate")
    end = _parse_date(raw_end, "endDate") if raw_end else dt.date.today()
    start = _parse_date(raw_start, "startDate") if raw_start else end - dt.timedelta(days=default_days)
    if end <= start:
        raise InvalidCostParameters("endDate must be after startDate")
    return start, end


def parse_choice(params: Mapping[str, Any], field: str, allowed: List[str], default: str) -> str:
    """Case-insensitive pick from ``allowed``, returned in its canonical spelling."""
    value = params.get(field)
    if value is None or value == "":
        return default
    if isinstance(value, str):
        for choice in allowed:
            if choice.lower() == value.lower():
                return choice
    raise InvalidCostParameters(f"{field} must be one of {', '.join(allowed)}")


def summarize(provider: str, start: dt.date, end: dt.date, granularity: str,
              rows: List[Dict[str, Any]], currency: str = "USD") -> Dict[str, Any]:
    if rows:
        currency = rows[0].get("currency") or currency
    return {
        "provider": provider,
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "granularity": granularity,
        "total": sum(r["amount"] for r in rows),
        "currency": currency,
        "rows": rows,
    }
