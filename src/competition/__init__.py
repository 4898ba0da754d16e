"""
Fixture generation, standings and bracket advancement for pickleball tournaments.
"""
