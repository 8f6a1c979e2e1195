"""Room domain services: registry, boards, win evaluation and the room
state machine.

HTTP routes and socket handlers import from here, keeping transport
concerns separated from the rules of the game.
"""
