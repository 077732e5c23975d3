"""
Integration tests for the StreamPulse service.

These tests run the FastAPI app in-process; the upstream statistics API is
always mocked, so no network access is needed.
"""
