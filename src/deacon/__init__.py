"""
Deacon: lifecycle supervisor for a town of agent sessions.

Reads lifecycle requests from the deacon inbox, checks that the
requesting agent has marked itself ready, and restarts, cycles, or
shuts down its session.
"""

import os

__version__ = "0.1.0"

TOWN_ROOT = os.environ.get("DEACON_TOWN_ROOT", "~/gt")
