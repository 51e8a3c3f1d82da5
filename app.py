import logging

from flask import Flask
from flask.logging import default_handler
from sqlalchemy import event
from config import Config
from models import db


def _enable_sqlite_savepoints(engine):
    # pysqlite opens transactions lazily, which breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Logging
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    default_handler.setFormatter(logging.Formatter(app.config["LOG_FORMAT"]))

    # Initialize Extensions
    db.init_app(app)

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(db.engine)
        db.create_all()

    return app


app = create_app()

if __name__ == "__main__":
    with app.app_context():
        from models.employee import Employee
        if not Employee.query.first():
            print("\n⚠️  WARNING: Employee directory is empty.\n")
