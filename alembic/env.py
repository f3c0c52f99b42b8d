import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# env.py vive en alembic/env.py; la raíz del repo tiene que estar en el path
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from app.core.config import settings  # noqa: E402
from app.database.database import Base  # noqa: E402
# Modelos importados por efecto lateral para que autogenerate los vea
import app.modules.logs.models  # noqa: F401,E402
import app.modules.suppliers.models  # noqa: F401,E402
import app.modules.products.models  # noqa: F401,E402
import app.modules.purchases.models  # noqa: F401,E402
import app.modules.taxes.models  # noqa: F401,E402
import app.modules.payables.models  # noqa: F401,E402
import app.modules.payments.models  # noqa: F401,E402
import app.modules.inventory.models  # noqa: F401,E402

config.set_main_option("sqlalchemy.url", settings.database_url)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Genera el SQL sin conectarse a la base."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
