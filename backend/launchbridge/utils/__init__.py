"""Utility helpers for LaunchBridge."""
