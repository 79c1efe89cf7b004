from typing import Dict

from ..config import Settings
from .aws import AwsProvider
from .azure import AzureProvider
from .base import CostProvider


def create_providers(settings: Settings) -> Dict[str, CostProvider]:
    providers = [
        AwsProvider(region=settings.aws_region, default_days=settings.default_days),
        AzureProvider(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
            subscription_id=settings.azure_subscription_id,
            default_days=settings.default_days,
        ),
    ]
    return {p.name: p for p in providers}
