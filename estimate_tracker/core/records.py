"""
Record Store - async access to a single table.

Blocking SQLAlchemy work runs in the Starlette thread pool; once a write has
committed, the change is published on the Change Feed from the caller's event
loop, so feed subscribers never run on a worker thread.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from ..exceptions import StoreError
from .feed import ChangeFeed, INSERT, UPDATE, DELETE

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class SqlRecordStore:
    """
    Table facade offering ``select``, ``insert``, ``update`` and ``delete``.

    Filters are column/value pairs combined with AND; a list, tuple or set
    value becomes an ``IN`` clause.
    """
    def __init__(self, model, session_factory, feed: Optional[ChangeFeed] = None):
        self.model = model
        self.session_factory = session_factory
        self.feed = feed

    def _to_row(self, obj) -> Row:
        return {column.name: getattr(obj, column.name) for column in self.model.__table__.columns}

    def _filtered(self, db, filters: Optional[Dict[str, Any]]):
        query = db.query(self.model)
        for column, value in (filters or {}).items():
            attribute = getattr(self.model, column)
            if isinstance(value, (list, tuple, set)):
                query = query.filter(attribute.in_(list(value)))
            else:
                query = query.filter(attribute == value)
        return query

    def _select(self, filters, order_by, descending) -> List[Row]:
        db = self.session_factory()
        try:
            query = self._filtered(db, filters)
            if order_by:
                attribute = getattr(self.model, order_by)
                query = query.order_by(attribute.desc() if descending else attribute.asc())
            return [self._to_row(obj) for obj in query.all()]
        finally:
            db.close()

    def _insert(self, values: Row) -> Row:
        db = self.session_factory()
        try:
            obj = self.model(**values)
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return self._to_row(obj)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _update(self, filters, values: Row) -> List[Row]:
        db = self.session_factory()
        try:
            objs = self._filtered(db, filters).all()
            for obj in objs:
                for field, value in values.items():
                    setattr(obj, field, value)
            db.commit()
            for obj in objs:
                db.refresh(obj)
            return [self._to_row(obj) for obj in objs]
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _delete(self, filters) -> List[Row]:
        db = self.session_factory()
        try:
            objs = self._filtered(db, filters).all()
            rows = [self._to_row(obj) for obj in objs]
            for obj in objs:
                db.delete(obj)
            db.commit()
            return rows
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    async def _run(self, operation: str, func, *args):
        try:
            return await run_in_threadpool(func, *args)
        except SQLAlchemyError as e:
            logger.error(f"{self.model.__tablename__}.{operation} failed: {str(e)}")
            raise StoreError(f"{operation} on {self.model.__tablename__} failed") from e

    def _publish(self, event: str, rows: List[Row]) -> None:
        if self.feed is None:
            return
        for row in rows:
            self.feed.publish(event, row)

    async def select(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False
    ) -> List[Row]:
        """
        Fetch matching rows.

        Raises:
            StoreError: If the query fails
        """
        return await self._run("select", self._select, filters, order_by, descending)

    async def insert(self, values: Row) -> Row:
        """
        Insert one row and return it as stored, including generated columns.

        Raises:
            StoreError: If the insert fails
        """
        row = await self._run("insert", self._insert, values)
        self._publish(INSERT, [row])
        return row

    async def update(self, filters: Dict[str, Any], values: Row) -> List[Row]:
        """
        Apply ``values`` to every matching row.

        Returns:
            List of updated rows (empty when nothing matched)

        Raises:
            StoreError: If the update fails
        """
        rows = await self._run("update", self._update, filters, values)
        self._publish(UPDATE, rows)
        return rows

    async def delete(self, filters: Dict[str, Any]) -> int:
        """
        Delete every matching row.

        Returns:
            int: Number of deleted rows

        Raises:
            StoreError: If the delete fails
        """
        rows = await self._run("delete", self._delete, filters)
        self._publish(DELETE, rows)
        return len(rows)
