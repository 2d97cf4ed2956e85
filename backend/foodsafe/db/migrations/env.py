from logging.config import fileConfig
from alembic import context
from sqlalchemy import engine_from_config, pool
from foodsafe.settings import get_settings
from foodsafe.db.base import Base  # noqa
from foodsafe.core.capa.models import Capa  # noqa
from foodsafe.core.nonconformance.models import NonConformance  # noqa
from foodsafe.core.complaints.models import Complaint  # noqa
from foodsafe.core.documents.models import Document, DocumentVersion  # noqa
from foodsafe.core.activity.models import Activity  # noqa
from foodsafe.core.notifications.models import Notification  # noqa

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)
target_metadata = Base.metadata

# Alembic runs synchronously, so it uses the psycopg2 URL rather than the asyncpg one.
def get_url() -> str:
    return get_settings().DATABASE_SYNC_URL

def run_migrations_offline() -> None:
    context.configure(url=get_url(), target_metadata=target_metadata, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()

def run_migrations_online() -> None:
    connectable = engine_from_config({"sqlalchemy.url": get_url()}, prefix="sqlalchemy.", poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
