"""
Attachment storage models.

WHAT: Three tables that together store attachments.

WHY: The same file often arrives more than once (a customer sends the same
mail twice, a reply quotes the original attachments). Payloads are stored
once per content digest and shared:

- Store:        one row per attachment of an object (article, ticket)
- StoreFile:    one row per distinct content, keyed by SHA-256, with the
                number of Store rows that reference it
- StoreContent: the payload bytes of a StoreFile

HOW: AttachmentStore increments StoreFile.ref_count when a Store row is
added and decrements it when one is removed; at zero the StoreFile and its
StoreContent are deleted.
"""

from sqlalchemy import Column, Integer, String, LargeBinary, ForeignKey, JSON
from sqlalchemy.orm import relationship

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin, ObjectReferenceMixin


class StoreFile(Base, PrimaryKeyMixin, TimestampMixin):
    """Distinct attachment content."""

    __tablename__ = "store_files"

    sha = Column(String(128), nullable=False, unique=True, index=True)
    size = Column(Integer, nullable=False, default=0)
    ref_count = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<StoreFile(id={self.id}, sha={self.sha[:12]}, ref_count={self.ref_count})>"


class StoreContent(Base, PrimaryKeyMixin):
    """Payload bytes of one StoreFile."""

    __tablename__ = "store_contents"

    store_file_id = Column(
        Integer, ForeignKey("store_files.id"), nullable=False, unique=True, index=True
    )
    data = Column(LargeBinary, nullable=False)


class Store(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """Attachment of one object, pointing at shared content."""

    __tablename__ = "stores"

    store_file_id = Column(Integer, ForeignKey("store_files.id"), nullable=False, index=True)
    filename = Column(String(250), nullable=False)
    content_type = Column(String(120), nullable=False, default="application/octet-stream")
    preferences = Column(JSON, nullable=False, default=dict)
    created_by_id = Column(Integer, nullable=True)

    file = relationship("StoreFile", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, {self.object_type}#{self.o_id}, filename={self.filename})>"

    @property
    def size(self) -> int:
        return self.file.size if self.file is not None else 0
