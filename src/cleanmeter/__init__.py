"""cleanmeter - entitlement, usage metering and scan progress streaming."""

__version__ = "0.1.0"
