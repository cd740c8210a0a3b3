"""Integration tests against live backing services.

Tests skip when the service they need is not reachable.
"""
