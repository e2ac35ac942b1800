"""Release ingestion pipeline.

This module discovers published release partitions, retrieves and parses
them, and drives each partition through its run state machine.
"""
