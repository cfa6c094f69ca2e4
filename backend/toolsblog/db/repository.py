"""Generic CRUD helpers shared by the services"""
import logging
from typing import Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import func, inspect, select, update as sql_update
from sqlalchemy.orm import Session

from toolsblog.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

MAX_PAGE_SIZE = 100


class Repository(Generic[ModelT]):
    """CRUD operations over one model class bound to one session.

    Writes commit by default; pass ``commit=False`` to group several writes
    into the caller's transaction.
    """

    def __init__(self, model: Type[ModelT], db: Session):
        self.model = model
        self.db = db
        self._columns = {attr.key for attr in inspect(model).column_attrs}

    def _check_fields(self, values: Dict[str, Any]) -> None:
        unknown = set(values) - self._columns
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {self.model.__name__}: {', '.join(sorted(unknown))}"
            )

    def _filtered(self, filters: Optional[Dict[str, Any]]):
        stmt = select(self.model)
        if filters:
            self._check_fields(filters)
            for key, value in filters.items():
                stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    def _finish(self, commit: bool) -> None:
        if commit:
            self.db.commit()
        else:
            self.db.flush()

    def create(self, commit: bool = True, **values) -> ModelT:
        self._check_fields(values)
        instance = self.model(**values)
        self.db.add(instance)
        self._finish(commit)
        if commit:
            self.db.refresh(instance)
        return instance

    def get(self, record_id: int) -> ModelT:
        """Load a record by primary key.

        Raises:
            NotFoundError: if no record has that id
        """
        instance = self.db.get(self.model, record_id)
        if instance is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        return instance

    def find_one(self, **filters) -> Optional[ModelT]:
        return self.db.execute(self._filtered(filters).limit(1)).scalars().first()

    def find(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        limit: int = 10,
        sort: Optional[str] = None,
        order: str = "desc",
    ) -> Dict[str, Any]:
        """Paginated query returning ``{"data", "total", "page", "limit"}``"""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        stmt = self._filtered(filters)

        sort = sort or ("created_at" if "created_at" in self._columns else "id")
        if sort not in self._columns:
            raise ValidationError(f"Cannot sort {self.model.__name__} by {sort}")
        column = getattr(self.model, sort)
        stmt = stmt.order_by(column.asc() if order == "asc" else column.desc())

        total = self.db.execute(
            select(func.count()).select_from(self._filtered(filters).subquery())
        ).scalar_one()
        data = self.db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars().all()
        return {"data": list(data), "total": total, "page": page, "limit": limit}

    def update(self, record_id: int, values: Dict[str, Any], commit: bool = True) -> ModelT:
        """Set exactly the given columns on one record"""
        self._check_fields(values)
        if "id" in values:
            raise ValidationError("Primary key cannot be updated")
        instance = self.get(record_id)
        for key, value in values.items():
            setattr(instance, key, value)
        self._finish(commit)
        return instance

    def delete(self, record_id: int, commit: bool = True) -> None:
        instance = self.get(record_id)
        self.db.delete(instance)
        self._finish(commit)

    def bulk_create(self, rows: Iterable[Dict[str, Any]], commit: bool = True) -> List[ModelT]:
        instances = []
        for values in rows:
            self._check_fields(values)
            instances.append(self.model(**values))
        self.db.add_all(instances)
        self._finish(commit)
        return instances

    def bulk_update(self, filters: Dict[str, Any], values: Dict[str, Any], commit: bool = True) -> int:
        """Apply values to every matching row, returning the modified count"""
        self._check_fields(filters)
        self._check_fields(values)
        stmt = sql_update(self.model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        result = self.db.execute(stmt.values(**values).execution_options(synchronize_session="fetch"))
        self._finish(commit)
        return result.rowcount

    def exists(self, **filters) -> bool:
        return self.find_one(**filters) is not None

    def count(self, **filters) -> int:
        return self.db.execute(
            select(func.count()).select_from(self._filtered(filters).subquery())
        ).scalar_one()
