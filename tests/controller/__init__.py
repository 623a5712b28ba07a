"""Tests for the controller module."""
