"""
API test package for the Task Tracker.

Tests use the Flask test client and demonstrate:
- Lifecycle endpoint testing
- Input validation testing
- Error-to-status-code mapping
"""
