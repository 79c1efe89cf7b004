import datetime as dt
import logging
from typing import Any, Dict, List, Mapping, Optional

from azure.identity import ClientSecretCredential
from azure.mgmt.costmanagement import CostManagementClient

from ..errors import InvalidCostParameters, ProviderConfigurationError
from .base import CostProvider, parse_choice, parse_period, summarize

LOG = logging.getLogger(__name__)

GRANULARITIES = ["Daily", "Monthly"]


def _usage_date(value: Any, fallback: str) -> str:
    # daily rows carry UsageDate as 20240101, monthly rows BillingMonth as an ISO timestamp
    if value is None:
        return fallback
    text = str(value)
    if len(text) == 8 and text.isdigit():
        return f"{text[:4]}-{text[4:6]}-{text[6:]}"
    return text[:10]


class AzureProvider(CostProvider):
    """Cost Management ``query.usage`` over one subscription scope."""

    name = "azure"

    def __init__(self, tenant_id: Optional[str] = None, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, subscription_id: Optional[str] = None,
                 default_days: int = 7, client=None):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.subscription_id = subscription_id
        self.default_days = default_days
        self._client = client

    def _cost_client(self):
        if self._client is None:
            required = {
                "AZURE_TENANT_ID": self.tenant_id,
                "AZURE_CLIENT_ID": self.client_id,
                "AZURE_CLIENT_SECRET": self.client_secret,
            }
            missing = [k for k, v in required.items() if not v]
            if missing:
                raise ProviderConfigurationError(f"Azure credentials missing: {', '.join(missing)}")
            credential = ClientSecretCredential(tenant_id=self.tenant_id, client_id=self.client_id,
                                                client_secret=self.client_secret)
            self._client = CostManagementClient(credential)
        return self._client

    def fetch_costs(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        start, end = parse_period(params, self.default_days)
        granularity = parse_choice(params, "granularity", GRANULARITIES, "Daily")
        group_name = params.get("groupBy") or "ServiceName"
        if not isinstance(group_name, str):
            raise InvalidCostParameters("groupBy must be a dimension name")
        subscription_id = params.get("subscriptionId") or self.subscription_id
        if not subscription_id:
            raise ProviderConfigurationError("AZURE_SUBSCRIPTION_ID is not set")

        # Azure's period is inclusive on both ends
        last_day = end - dt.timedelta(days=1)
        query = {
            "type": "Usage",
            "timeframe": "Custom",
            "timePeriod": {"from": f"{start.isoformat()}T00:00:00Z", "to": f"{last_day.isoformat()}T23:59:59Z"},
            "dataset": {
                "granularity": granularity,
                "aggregation": {
                    "totalCost": {"name": "PreTaxCost", "function": "Sum"},
                },
                "grouping": [
                    {"type": "Dimension", "name": group_name},
                ],
            },
        }
        scope = f"/subscriptions/{subscription_id}"
        LOG.debug(f"Azure cost query {scope} {start}..{end} granularity={granularity} groupBy={group_name}")

        response = self._cost_client().query.usage(scope=scope, parameters=query)
        asdict = response.as_dict()
        cols = [c["name"] for c in asdict.get("columns", [])]

        def idx(name: str) -> int:
            return cols.index(name) if name in cols else -1

        i_cost = idx("PreTaxCost")
        i_group = idx(group_name)
        i_currency = idx("Currency")
        i_date = idx("UsageDate") if "UsageDate" in cols else idx("BillingMonth")
        rows: List[Dict[str, Any]] = []
        for r in asdict.get("rows", []):
            rows.append({
                "date": _usage_date(r[i_date] if i_date >= 0 else None, start.isoformat()),
                "group": r[i_group] if i_group >= 0 else None,
                "amount": float(r[i_cost]) if i_cost >= 0 and r[i_cost] is not None else 0.0,
                "currency": r[i_currency] if i_currency >= 0 and r[i_currency] else "USD",
            })

        LOG.info(f"Azure returned {len(rows)} cost rows")
        return summarize(self.name, start, end, granularity, rows)
