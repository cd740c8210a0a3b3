"""Test suite for provider search."""
