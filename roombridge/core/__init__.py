"""Notification primitives shared by sessions, the HTTP layer and event sinks.

Kept free of Playwright and FastAPI concerns so tests can drive them with fakes.
"""
