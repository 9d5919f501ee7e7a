"""Offline edit tracking and conflict resolution for Smartsheet sheets."""
