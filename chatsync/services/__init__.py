"""Adapters to the managed backend (REST gateway and edge functions)."""
