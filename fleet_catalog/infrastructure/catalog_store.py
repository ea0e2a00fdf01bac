import logging
from typing import Protocol

from sqlalchemy import Column, DateTime, MetaData, String, Table, all_, bindparam, text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from fleet_catalog.domain.entities import EntityMutation
from fleet_catalog.domain.exceptions import CatalogStoreException

logger = logging.getLogger(__name__)

# Rows per upsert statement; asyncpg accepts at most 32767 bind parameters per query
UPSERT_BATCH_SIZE = 1000

# SQLAlchemy core Table definition
metadata = MetaData()
entities_table = Table(
    'catalog_entities', metadata,
    Column('entity_ref', String, primary_key=True),
    Column('location_key', String, nullable=False, index=True),
    Column('kind', String, nullable=False),
    Column('namespace', String, nullable=False),
    Column('name', String, nullable=False),
    Column('body', JSONB, nullable=False),
    Column('synced_at', DateTime(timezone=True), server_default=text('NOW()')),
)


class EntityProviderConnection(Protocol):
    """Destination of the full entity snapshot produced by one sync pass."""

    async def apply_mutation(self, mutation: EntityMutation) -> None:
        ...


class PostgresCatalogStore:
    """
    Stores entity snapshots in PostgreSQL.
    A full mutation replaces every row previously written under the same location key.
    """

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url, echo=False)

    def connection(self, location_key: str) -> "CatalogStoreConnection":
        return CatalogStoreConnection(self, location_key)

    async def replace_snapshot(self, location_key: str, mutation: EntityMutation) -> None:
        """
        Applies a full snapshot in a single transaction: rows of location_key that are
        absent from the snapshot are deleted, the rest are upserted in batches of
        UPSERT_BATCH_SIZE rows.

        Args:
            location_key (str): The sync identity that owns the snapshot.
            mutation (EntityMutation): The snapshot to store.

        Raises:
            CatalogStoreException: If the database rejects the transaction.
        """
        values = [
            {
                'entity_ref': deferred.entity.ref,
                'location_key': deferred.location_key,
                'kind': deferred.entity.kind.value,
                'namespace': deferred.entity.metadata.namespace,
                'name': deferred.entity.metadata.name,
                'body': deferred.entity.to_document(),
            } for deferred in mutation.entities
        ]
        refs = [v['entity_ref'] for v in values]

        try:
            async with self.engine.begin() as conn:
                stale = entities_table.delete().where(
                    entities_table.c.location_key == location_key,
                    # One array parameter regardless of the snapshot size
                    entities_table.c.entity_ref != all_(bindparam('refs', refs, type_=ARRAY(String))),
                )
                await conn.execute(stale)

                for i in range(0, len(values), UPSERT_BATCH_SIZE):
                    stmt = insert(entities_table).values(values[i : i + UPSERT_BATCH_SIZE])
                    upsert_stmt = stmt.on_conflict_do_update(
                        index_elements=['entity_ref'],
                        set_={
                            'location_key': stmt.excluded.location_key,
                            'body': stmt.excluded.body,
                            'synced_at': text('NOW()'),
                        },
                    )
                    await conn.execute(upsert_stmt)
        except SQLAlchemyError as e:
            raise CatalogStoreException(f"Failed to apply entity snapshot: {e}") from e

        logger.info(f"Stored {len(values)} entities for {location_key}")


class CatalogStoreConnection:
    """EntityProviderConnection bound to one provider's location key."""

    def __init__(self, store: PostgresCatalogStore, location_key: str):
        self.store = store
        self.location_key = location_key

    async def apply_mutation(self, mutation: EntityMutation) -> None:
        await self.store.replace_snapshot(self.location_key, mutation)
