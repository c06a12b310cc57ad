"""Tests for the review crawler; shared fixtures live in conftest.py."""
