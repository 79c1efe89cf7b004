class CostInsightError(Exception):
    """Base class for errors raised by costinsight."""


class ProviderConfigurationError(CostInsightError):
    """A provider is missing credentials or settings it needs."""


class InvalidCostParameters(CostInsightError, ValueError):
    """Provider-specific request parameters could not be used."""


class DeploymentError(CostInsightError):
    pass
