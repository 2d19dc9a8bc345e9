"""locationcheck backend - device telemetry ingestion service."""
