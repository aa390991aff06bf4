"""
LiveTriage - Backend Application Package

This package contains:
- HTTP endpoints for call initiation, triage webhooks and dashboard polling
- The triage store and payload extractor
- The caller-side call session controller and speech capture
- The dashboard-side live call aggregator
"""

__version__ = "0.1.0"
