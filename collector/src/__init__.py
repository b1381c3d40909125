"""
Collector daemon package for solar inverter telemetry.

Polls one or more inverters over their authenticated HTTPS JSON interface,
stores raw power/yield readings in a local SQLite database, and keeps hourly
and daily rollups current for graphing and alerting.

CHANGELOG:
- 2026-10-16: Initial creation

TODO:
- None
"""
