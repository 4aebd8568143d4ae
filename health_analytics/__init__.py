"""Core analytics for personal health monitoring.

This package turns a window of glucose readings, meals and exercise sessions
into insights: statistics, patterns, predictions, risk and recommendations.
Storage, sync and presentation live outside of it.
"""
