"""
Routes package for the Task Tracker.

- api: JSON REST endpoints over the task lifecycle engine
"""
