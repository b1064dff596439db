"""
Entorno de Alembic: usa la URL y el metadata de mostrador.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from mostrador.core.config import settings
from mostrador.database.database import Base

# Registrar todos los modelos en el metadata
from mostrador.modules.products import models as products_models  # noqa: F401
from mostrador.modules.clients import models as clients_models  # noqa: F401
from mostrador.modules.pos import models as pos_models  # noqa: F401
from mostrador.modules.sales import models as sales_models  # noqa: F401
from mostrador.modules.purchases import models as purchases_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

if not config.get_main_option("sqlalchemy.url"):
    config.set_main_option("sqlalchemy.url", settings.database_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
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
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
