"""Tests for the store module."""
