"""
Flask-Migrate / Alembic entry point.

Usage:
    flask db upgrade
    flask seed-templates
"""

from pipetrak import create_app

app = create_app()
