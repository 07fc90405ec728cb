"""Adaptive curriculum engine: learning paths, weekly analysis and scenario generation queue."""
