"""
Backend package for the academic chat service.

This package provides a FastAPI application with document store, account,
and realtime abstractions so the chat front-end can talk to one service for
sessions, persistence and change notifications.
"""
