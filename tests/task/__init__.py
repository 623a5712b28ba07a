"""Tests for the task module."""
