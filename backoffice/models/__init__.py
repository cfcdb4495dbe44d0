"""
Back-office workflow engine — SQLAlchemy models.

The shared ``db`` instance lives here; model modules import it and
``create_app`` binds it to the Flask application.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
