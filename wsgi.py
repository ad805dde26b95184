"""WSGI entry point for the tracker service."""

import os

from tracker_app import create_app

app = create_app(os.getenv("FLASK_ENV", "production"))
