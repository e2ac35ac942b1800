"""Storage layer for sequence metadata and payloads.

This module persists searchable record metadata, content-addressed payload
references and ingestion run history behind the SDK client.
"""
