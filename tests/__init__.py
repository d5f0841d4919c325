"""Tests for the Family Stars integration."""
