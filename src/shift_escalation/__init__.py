"""Shift escalation service.

Fills open care shifts by texting the patient's staff pool in waves,
then calling staff one at a time, until someone accepts.
"""

__version__ = "0.1.0"
