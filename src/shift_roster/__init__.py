"""
Shift Roster: Rule-Driven Staff Scheduling

Assigns personnel to work shifts over a date range using staffing
requirements, rest-day quotas, consecutive-workday limits and a
day-of-year fairness rotation.
"""

__version__ = "1.0.0"
__author__ = "Shift Roster Team"
