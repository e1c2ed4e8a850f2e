"""Concrete host-process collaborators (browser, tabs, room opener)."""
