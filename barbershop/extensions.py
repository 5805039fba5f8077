from flask import current_app
from flask_sqlalchemy import SQLAlchemy

from .models import Base

db = SQLAlchemy(model_class=Base)


def get_services():
    """Service objects built once in create_app()."""
    return current_app.extensions["barbershop"]
