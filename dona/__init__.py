"""DoNa tiered entitlement and usage-metering core."""

__version__ = "0.1.0"
