"""Test infrastructure - scripted backends and helpers, NOT actual tests."""
