import sys
from logging.config import fileConfig

from alembic import context
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

sys.path.append(".")

import loanflow.models  # noqa: E402,F401  registers every table on Base.metadata
from loanflow.config import settings  # noqa: E402
from loanflow.database import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=settings.database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def _stamp_bootstrapped_sqlite(connection) -> None:
    # Local SQLite databases created via Base.metadata.create_all() have the
    # schema but no version row; stamp them at head instead of failing on
    # "table already exists".
    if connection.dialect.name != "sqlite":
        return
    try:
        connection.execute(
            text(
                "CREATE TABLE IF NOT EXISTS alembic_version ("
                "version_num VARCHAR(128) NOT NULL, "
                "CONSTRAINT alembic_version_pkc PRIMARY KEY (version_num))"
            )
        )
        count = int(connection.execute(text("select count(*) from alembic_version")).scalar() or 0)
        if count:
            return
        contracts_exists = bool(
            connection.execute(
                text("select 1 from sqlite_master where type='table' and name='contracts' limit 1")
            ).scalar()
        )
        if not contracts_exists:
            return
        head = ScriptDirectory.from_config(config).get_current_head()
        if head:
            connection.execute(
                text("insert into alembic_version(version_num) values (:v)"), {"v": head}
            )
        connection.commit()
    except SQLAlchemyError:
        connection.rollback()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    provided_connection = config.attributes.get("connection")

    if provided_connection is not None:
        connection = provided_connection
        should_close = False
    else:
        connectable = create_engine(settings.database_url, future=True)
        connection = connectable.connect()
        should_close = True

    try:
        _stamp_bootstrapped_sqlite(connection)

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()
    finally:
        if should_close:
            connection.close()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
