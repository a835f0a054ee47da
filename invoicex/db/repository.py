from typing import Type, TypeVar, Generic, Optional, List, Dict, Any

from sqlalchemy import select, delete, update
from sqlalchemy.orm import Session, selectinload

from .models import Document, LineItem, Vendor, VendorTemplate, Batch
from .connection import Database, Base

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """Base repository class for common database operations"""

    def __init__(self, model_class: Type[T], db: Database):
        self.model_class = model_class
        self.db = db

    def create(self, data: Dict[str, Any]) -> T:
        """Create a new record"""
        with self.db.transaction() as session:
            instance = self.model_class(**data)
            session.add(instance)
            session.flush()
            session.refresh(instance)
            return instance

    def get(self, id: str) -> Optional[T]:
        """Get a record by ID"""
        with self.db.session() as session:
            return session.get(self.model_class, id)

    def update(self, id: str, data: Dict[str, Any]) -> Optional[T]:
        """Update a record"""
        with self.db.transaction() as session:
            instance = session.get(self.model_class, id)
            if instance:
                for key, value in data.items():
                    setattr(instance, key, value)
                session.flush()
                session.refresh(instance)
            return instance

    def list(self, **filters) -> List[T]:
        """List records with optional filters"""
        with self.db.session() as session:
            query = select(self.model_class)
            for key, value in filters.items():
                query = query.where(getattr(self.model_class, key) == value)
            return list(session.execute(query).scalars())


class DocumentRepository(BaseRepository[Document]):
    """Repository for document operations"""

    def __init__(self, db: Database):
        super().__init__(Document, db)

    def get_many(self, document_ids: List[str], owner_id: str) -> List[Document]:
        """Get the owner's documents among the given ids"""
        if not document_ids:
            return []
        with self.db.session() as session:
            query = select(Document).where(
                Document.id.in_(document_ids),
                Document.owner_id == owner_id
            )
            return list(session.execute(query).scalars())

    def list_by_batch(self, batch_id: str, statuses: Optional[List[str]] = None) -> List[Document]:
        """Get documents in a batch, optionally filtered by status"""
        with self.db.session() as session:
            return self.query_by_batch(session, batch_id, statuses)

    @staticmethod
    def query_by_batch(
        session: Session,
        batch_id: str,
        statuses: Optional[List[str]] = None
    ) -> List[Document]:
        """Get documents in a batch using an open session"""
        query = select(Document).where(Document.batch_id == batch_id)
        if statuses:
            query = query.where(Document.status.in_(statuses))
        return list(session.execute(query.order_by(Document.created_at)).scalars())

    @staticmethod
    def delete_line_items(session: Session, document_id: str) -> int:
        """Delete all line items of a document; returns the number deleted"""
        result = session.execute(delete(LineItem).where(LineItem.document_id == document_id))
        return result.rowcount or 0

    def unlink_from_batch(self, batch_id: str, document_ids: Optional[List[str]] = None) -> int:
        """Clear the batch reference of documents without deleting them"""
        with self.db.transaction() as session:
            statement = update(Document).where(Document.batch_id == batch_id)
            if document_ids is not None:
                statement = statement.where(Document.id.in_(document_ids))
            result = session.execute(statement.values(batch_id=None))
            return result.rowcount or 0


class VendorRepository(BaseRepository[Vendor]):
    """Repository for vendor operations"""

    def __init__(self, db: Database):
        super().__init__(Vendor, db)

    def list_candidates(self, owner_id: str) -> List[Vendor]:
        """
        Get the owner's vendors that can be detected

        A vendor is a candidate when it has identifiers or at least one
        template.
        """
        with self.db.session() as session:
            query = (
                select(Vendor)
                .options(selectinload(Vendor.templates))
                .where(Vendor.owner_id == owner_id)
                .order_by(Vendor.created_at)
            )
            vendors = list(session.execute(query).scalars())
        return [v for v in vendors if v.identifiers or v.templates]


class TemplateRepository(BaseRepository[VendorTemplate]):
    """Repository for vendor template operations"""

    def __init__(self, db: Database):
        super().__init__(VendorTemplate, db)

    def get_active_for_vendor(self, vendor_id: str) -> Optional[VendorTemplate]:
        """Get the first active template of a vendor"""
        with self.db.session() as session:
            query = (
                select(VendorTemplate)
                .where(VendorTemplate.vendor_id == vendor_id, VendorTemplate.is_active.is_(True))
                .order_by(VendorTemplate.created_at)
                .limit(1)
            )
            return session.execute(query).scalar_one_or_none()


class BatchRepository(BaseRepository[Batch]):
    """Repository for batch operations"""

    def __init__(self, db: Database):
        super().__init__(Batch, db)

    def get_active(self, batch_id: str) -> Optional[Batch]:
        """Get a batch unless it was soft-deleted"""
        with self.db.session() as session:
            query = select(Batch).where(Batch.id == batch_id, Batch.deleted_at.is_(None))
            return session.execute(query).scalar_one_or_none()

    def list_for_owner(self, owner_id: str, include_deleted: bool = False) -> List[Batch]:
        """List an owner's batches, newest first"""
        with self.db.session() as session:
            query = select(Batch).where(Batch.owner_id == owner_id)
            if not include_deleted:
                query = query.where(Batch.deleted_at.is_(None))
            return list(session.execute(query.order_by(Batch.created_at.desc())).scalars())
