"""
Telemetry rollup engine for solar inverter fleets.

Turns lifetime-energy counters fetched from the telemetry source into
per-period production (minute, day, month, year) with boundary lookback,
counter-reset clamping and period-over-period growth, then ranks a fleet of
devices by capacity-normalized specific yield.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-101)

TODO:
- None
"""
