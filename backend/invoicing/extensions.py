# Overview: Shared Flask-SQLAlchemy handle and Alembic migration wiring for the invoicing schema.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Models import `db` from here; create_app() binds both to the app
db = SQLAlchemy()
migrate = Migrate()
