"""
Battery usage processing daemon.

Samples per-consumer power attribution and battery level, persists the
samples locally, and turns the sample stream into calendar-aligned battery
level series and ranked per-slot usage diffs for charting.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-001)

TODO:
- None
"""
