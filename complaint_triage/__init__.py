"""Complaint triage and systemic-issue detection service."""

__version__ = "1.0.0"
