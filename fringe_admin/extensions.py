"""Application-wide Flask extensions."""

from flask_sqlalchemy import SQLAlchemy


# The SQLAlchemy handle backing Flask-Session's session table. The engine is
# configured in :func:`fringe_admin.create_app` so it follows the deployment
# environment (pooled Postgres, serverless, local SQLite).
db = SQLAlchemy()
