"""Round mechanics: sequences, difficulty, anti-cheat, scoring, the engine and timers.

Nothing here knows about HTTP or sockets; routes and handlers call in.
Settlement lives one level up in ``memorix.services.ledger``.
"""
