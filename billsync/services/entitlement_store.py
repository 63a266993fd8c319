# -*- coding: utf-8 -*-
"""
Entitlement store: durable subscription records keyed by user.

All writes are field-level statements (INSERT .. ON CONFLICT DO UPDATE for the
upsert, UPDATE .. WHERE for event-driven changes), never a read-modify-write
of a previously loaded row. The store does not commit; callers own the
transaction so a mutation and its dedup ledger row land together.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_, func, or_, select, update, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError

from billsync.errors import StoreUnavailable
from billsync.models.subscription import Subscription, SubscriptionStatus, utcnow
from billsync.infra.log import get_logger

logger = get_logger('billsync.store')

# Columns the upsert must never overwrite once they hold a value.
WRITE_ONCE_FIELDS = ("processor_customer_id",)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SubscriptionStore:
    """Thin data-access layer over the ``subscriptions`` table."""

    def __init__(self, db):
        self.db = db
        self.table = Subscription.__table__

    @property
    def session(self):
        return self.db.session

    # --- transaction control ---
    def commit(self):
        try:
            self.session.commit()
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailable(details=str(getattr(e, "orig", e)))

    def rollback(self):
        self.session.rollback()

    def ping(self) -> bool:
        try:
            self.session.execute(text("SELECT 1"))
            return True
        except OperationalError:
            self.session.rollback()
            return False

    # --- reads ---
    def get_by_user(self, user_id: str) -> Optional[Subscription]:
        """Current record or None; raises only for storage failures."""
        try:
            stmt = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            return self.session.execute(stmt).scalar_one_or_none()
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailable(details=str(getattr(e, "orig", e)))

    def find_user_id(self, subscription_id: Optional[str] = None,
                     customer_id: Optional[str] = None) -> Optional[str]:
        """
        Resolve the owning user from processor identifiers.

        The subscription id is tried first, then the customer id. Contact
        fields (email) are never used for resolution.
        """
        t = self.table
        try:
            for column, value in ((t.c.processor_subscription_id, subscription_id),
                                  (t.c.processor_customer_id, customer_id)):
                if not value:
                    continue
                user_id = self.session.execute(
                    select(t.c.user_id).where(column == value).limit(1)
                ).scalar_one_or_none()
                if user_id:
                    return user_id
            return None
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailable(details=str(getattr(e, "orig", e)))

    # --- writes ---
    def upsert_by_user(self, user_id: str, fields: Dict[str, Any],
                       write_once: Iterable[str] = WRITE_ONCE_FIELDS,
                       keep_canceled: bool = True,
                       not_after: Optional[datetime] = None) -> int:
        """
        Merge ``fields`` into the user's record, creating it if missing.

        Only the given fields are written. Columns listed in ``write_once``
        are filled only while empty; a row already holding a different value
        in one of them is left untouched as a whole. With ``keep_canceled`` an
        existing row canceled for the same ``processor_subscription_id`` is
        left untouched, and with ``not_after`` so is a row stamped by a newer
        event. Returns the number of rows inserted or updated.
        """
        values = dict(fields, user_id=user_id)
        write_once = set(write_once)
        dialect = self.session.get_bind().dialect.name
        insert_fn = _UPSERT_DIALECTS.get(dialect)

        try:
            if insert_fn is None:
                return self._upsert_portable(user_id, fields, write_once, keep_canceled, not_after)
            stmt = insert_fn(self.table).values(**values)
            set_ = {}
            for name in fields:
                if name in write_once:
                    set_[name] = func.coalesce(self.table.c[name], stmt.excluded[name])
                else:
                    set_[name] = stmt.excluded[name]
            set_["updated_at"] = utcnow()
            conditions = self._upsert_guards(fields, write_once, keep_canceled, not_after)
            stmt = stmt.on_conflict_do_update(
                index_elements=[self.table.c.user_id], set_=set_,
                where=and_(*conditions) if conditions else None)
            return self.session.execute(stmt).rowcount or 0
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailable(details=str(getattr(e, "orig", e)))

    def _upsert_guards(self, fields, write_once, keep_canceled, not_after):
        t = self.table
        conditions = []
        if keep_canceled and "processor_subscription_id" in fields:
            conditions.append(or_(
                t.c.status != SubscriptionStatus.CANCELED,
                t.c.processor_subscription_id.is_(None),
                t.c.processor_subscription_id != fields["processor_subscription_id"],
            ))
        # a row holding a different value in a write-once column is left alone
        for name in write_once:
            if fields.get(name) is not None:
                conditions.append(or_(t.c[name].is_(None), t.c[name] == fields[name]))
        if not_after is not None:
            conditions.append(or_(t.c.last_event_at.is_(None), t.c.last_event_at <= not_after))
        return conditions

    def _upsert_portable(self, user_id, fields, write_once, keep_canceled, not_after):
        """UPDATE then INSERT, for dialects without ON CONFLICT support."""
        t = self.table
        set_ = {}
        for name, value in fields.items():
            set_[name] = func.coalesce(t.c[name], value) if name in write_once else value
        conditions = [t.c.user_id == user_id] + self._upsert_guards(fields, write_once, keep_canceled, not_after)

        result = self.session.execute(update(t).where(and_(*conditions)).values(**set_))
        if result.rowcount:
            return result.rowcount
        if self._exists(user_id):
            return 0
        try:
            with self.session.begin_nested():
                self.session.execute(t.insert().values(user_id=user_id, **fields))
            return 1
        except IntegrityError:
            # lost the race to a concurrent insert; apply as an update
            return self.session.execute(update(t).where(and_(*conditions)).values(**set_)).rowcount or 0

    def _exists(self, user_id: str) -> bool:
        t = self.table
        return self.session.execute(
            select(t.c.id).where(t.c.user_id == user_id)
        ).first() is not None

    def update_subscription_fields(self, user_id: str, subscription_id: str,
                                   fields: Dict[str, Any], *,
                                   keep_canceled: bool = True,
                                   not_after: Optional[datetime] = None) -> int:
        """
        Apply ``fields`` to the user's record for one subscription generation.

        The row matches only while it tracks ``subscription_id`` (or tracks no
        subscription yet). With ``keep_canceled`` a row already canceled for
        that subscription is left untouched. With ``not_after`` rows stamped
        by a newer event are left untouched. Returns the matched row count.
        """
        t = self.table
        conditions = [
            t.c.user_id == user_id,
            or_(t.c.processor_subscription_id.is_(None),
                t.c.processor_subscription_id == subscription_id),
        ]
        if keep_canceled:
            conditions.append(or_(
                t.c.status != SubscriptionStatus.CANCELED,
                t.c.processor_subscription_id.is_(None),
            ))
        if not_after is not None:
            conditions.append(or_(t.c.last_event_at.is_(None), t.c.last_event_at <= not_after))

        try:
            result = self.session.execute(update(t).where(and_(*conditions)).values(**fields))
            return result.rowcount or 0
        except OperationalError as e:
            self.session.rollback()
            raise StoreUnavailable(details=str(getattr(e, "orig", e)))
