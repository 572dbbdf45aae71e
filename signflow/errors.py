class BillingError(Exception):
    """Base class for billing and entitlement failures."""


class InvalidSignature(BillingError):
    """Webhook payload failed provider signature verification. Retrying won't help."""


class ConfigurationError(BillingError):
    """A required secret or key is not configured."""


class UpstreamProviderError(BillingError):
    """The payments provider call failed. Safe to retry."""


class SubscriptionNotFound(UpstreamProviderError, LookupError):
    """The provider has no subscription with that id."""
