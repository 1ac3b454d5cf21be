"""Game domain services: turn engine, scoring, turn cards, words and timers.

This package contains the core game mechanics used by HTTP routes, socket
handlers and bot drivers, keeping transport concerns separated from the
rules of play.
"""


def get_engine():
    """Return the GameEngine bound to the current Flask app."""
    from flask import current_app
    return current_app.extensions['probe.engine']
