from dataclasses import dataclass

from flask import current_app


@dataclass
class GameServices:
    """Process-scoped game state, created by the app factory and bound to the app."""
    settings: object
    ledger: object
    accumulator: object
    engine: object
    payout_job: object


def get_services() -> GameServices:
    return current_app.extensions['memorix']
