import os
from dataclasses import dataclass, field
from typing import List, Optional


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass
class Settings:
    aws_region: str = "us-east-1"
    azure_tenant_id: Optional[str] = None
    azure_client_id: Optional[str] = None
    azure_client_secret: Optional[str] = None
    azure_subscription_id: Optional[str] = None
    default_days: int = 7
    metrics_sample_seconds: float = 5.0
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            azure_tenant_id=os.getenv("AZURE_TENANT_ID"),
            azure_client_id=os.getenv("AZURE_CLIENT_ID"),
            # older deployments export AZURE_SECRET
            azure_client_secret=os.getenv("AZURE_CLIENT_SECRET") or os.getenv("AZURE_SECRET"),
            azure_subscription_id=os.getenv("AZURE_SUBSCRIPTION_ID"),
            default_days=int(os.getenv("COST_DEFAULT_DAYS", "7")),
            metrics_sample_seconds=float(os.getenv("METRICS_SAMPLE_SECONDS", "5")),
            cors_allow_origins=_csv(os.getenv("CORS_ALLOW_ORIGINS", "*")) or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )
