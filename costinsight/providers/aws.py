import logging
from typing import Any, Dict, List, Mapping, Optional

import boto3

from ..errors import InvalidCostParameters
from .base import CostProvider, parse_choice, parse_period, summarize

LOG = logging.getLogger(__name__)

GRANULARITIES = ["DAILY", "MONTHLY"]
COST_METRIC = "UnblendedCost"


class AwsProvider(CostProvider):
    """Cost Explorer ``get_cost_and_usage`` grouped by one dimension."""

    name = "aws"

    def __init__(self, region: str = "us-east-1", default_days: int = 7, client=None):
        self.region = region
        self.default_days = default_days
        self._client = client

    def _ce(self):
        if self._client is None:
            self._client = boto3.client("ce", region_name=self.region)
        return self._client

    def fetch_costs(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        start, end = parse_period(params, self.default_days)
        granularity = parse_choice(params, "granularity", GRANULARITIES, "DAILY")
        group_key = params.get("groupBy") or "SERVICE"
        if not isinstance(group_key, str):
            raise InvalidCostParameters("groupBy must be a dimension name")

        query = {
            "TimePeriod": {"Start": start.isoformat(), "End": end.isoformat()},
            "Granularity": granularity,
            "Metrics": [COST_METRIC],
            "GroupBy": [{"Type": "DIMENSION", "Key": group_key}],
        }
        LOG.debug(f"AWS cost query {start}..{end} granularity={granularity} groupBy={group_key}")

        ce = self._ce()
        rows: List[Dict[str, Any]] = []
        token: Optional[str] = None
        while True:
            kwargs = dict(query)
            if token:
                kwargs["NextPageToken"] = token
            resp = ce.get_cost_and_usage(**kwargs)
            for period in resp.get("ResultsByTime", []):
                date = period["TimePeriod"]["Start"]
                for group in period.get("Groups", []):
                    keys = group.get("Keys", [])
                    metric = group["Metrics"][COST_METRIC]
                    rows.append({
                        "date": date,
                        "group": keys[0] if keys else None,
                        "amount": float(metric.get("Amount") or 0.0),
                        "currency": metric.get("Unit") or "USD",
                    })
            token = resp.get("NextPageToken")
            if not token:
                break

        LOG.info(f"AWS returned {len(rows)} cost rows")
        return summarize(self.name, start, end, granularity, rows)
