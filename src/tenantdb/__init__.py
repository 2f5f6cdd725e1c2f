"""tenantdb - per-organization database routing and lifecycle."""

__version__ = "0.1.0"
