"""Tests for the strategy module."""
