"""PulseKit ingestion service - accepts telemetry events and dispatches alerting."""

__version__ = "0.1.0"
