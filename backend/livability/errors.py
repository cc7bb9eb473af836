"""Exception types shared across the scoring and job pipeline."""


class LivabilityError(Exception):
    """Base class for application errors."""


class ConfigurationError(LivabilityError):
    """Static configuration or job definition is invalid. Never retried."""


class UnknownCityError(ConfigurationError):
    """A city slug is not present in the city registry."""

    def __init__(self, slug: str):
        super().__init__(f"Unknown city: {slug}")
        self.slug = slug


class PoiSourceError(LivabilityError):
    """A POI lookup failed (network, rate limit, database).

    Raised instead of returning an empty result so that "nothing nearby"
    and "lookup failed" stay distinguishable.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
