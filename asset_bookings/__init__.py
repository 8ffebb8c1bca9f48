"""Shared-asset reservation engine for the IT asset dashboard."""
