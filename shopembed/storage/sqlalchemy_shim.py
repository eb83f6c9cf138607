from dataclasses import dataclass
from typing import Callable

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import Session
from sqlalchemy.schema import Table
from sqlalchemy.sql import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
import zope.interface

from ..interfaces import ICredentialStore
from ..models import Credential
from ..scopes import format_scope, parse_scope


def make_credential_table(metadata, name="shop_credential"):
    return Table(
        name,
        metadata,
        Column("shop", String(255), primary_key=True),
        Column("access_token", String(255), nullable=False),
        # Comma separated, as shopify sends it.
        Column("scope", Text, nullable=False, default=""),
    )


@zope.interface.implementer(ICredentialStore)
@dataclass
class SqlalchemyCredentialStore:
    """Store one credential row per shop with SQLAlchemy.

    Committing is left to whoever owns the session, the upsert keeps two
    concurrent installs of the same shop from racing into two rows.
    """

    db: Session
    table: Table

    # Dialect specific insert supporting on_conflict_do_update, ie. sqlite's.
    insert: Callable = postgresql_insert
    mark_changed: Callable = None

    def get(self, shop):
        row = (
            self.db.execute(select(self.table).where(self.table.c.shop == shop))
            .mappings()
            .first()
        )
        if not row:
            return None
        return Credential(
            access_token=row["access_token"], scope=parse_scope(row["scope"])
        )

    def update(self, shop, credential):
        values = dict(
            access_token=credential.access_token,
            scope=format_scope(credential.scope),
        )
        result = self.db.execute(
            self.insert(self.table)
            .values(shop=shop, **values)
            .on_conflict_do_update(index_elements=[self.table.c.shop], set_=values)
        )
        if self.mark_changed:
            self.mark_changed(self.db)
        return result

    def delete(self, shop):
        result = self.db.execute(self.table.delete().where(self.table.c.shop == shop))
        if self.mark_changed:
            self.mark_changed(self.db)
        return result
