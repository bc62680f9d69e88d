"""
Tests for core app.

This package contains test modules for:
- test_exceptions.py: Error payloads and the DRF exception handler
- test_views.py: Health check endpoint
"""
