"""Tests for the pipeline module."""
