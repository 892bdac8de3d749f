"""Notifications and backups."""
