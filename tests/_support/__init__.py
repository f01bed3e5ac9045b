"""
Test support utilities for apphost tests.

Helpers that are not pytest fixtures but are shared across test files:
the in-memory ``FakeHandler`` and small declaration builders.
"""
