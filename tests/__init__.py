"""
Test suite for the Task Tracker.

This package contains:
- unit/: Lifecycle engine, numbering, parsing, activity and auth tests
  run directly against the SQLAlchemy session
- integration/: REST API tests through the Flask test client
"""
