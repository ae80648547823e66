"""
HTTP surface for the telemetry rollup engine.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-113)
"""
