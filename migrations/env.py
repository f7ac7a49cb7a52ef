import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# alembic 從 migrations/ 底下跑，專案根目錄要自己補進 sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from sqlmodel import SQLModel  # noqa: E402

from core.config import load_settings  # noqa: E402

# 每張表都要 import 進來，metadata 才不會是空的
from domains.payment.model import (  # noqa: E402, F401
    PaymentOrder,
    PaymentRequest,
    Receipt,
    SavedPaymentMethod,
)

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DATABASE_URL 以環境變數為準，alembic.ini 裡不放連線字串
config.set_main_option("sqlalchemy.url", load_settings().database_url)
target_metadata = SQLModel.metadata


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata, compare_type=True
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
