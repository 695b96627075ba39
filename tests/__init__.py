"""
codeindex Test Suite.

Tests for the code index system including:
- Unit tests for individual components
- Integration tests for the full indexing flow
"""
