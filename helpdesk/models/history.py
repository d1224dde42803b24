"""
History and tag models.

WHAT: Attribute-change history and free-form tags of an object.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, Enum, UniqueConstraint

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin, ObjectReferenceMixin


class HistoryType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    NOTIFICATION = "notification"
    MERGED_INTO = "merged_into"
    RECEIVED_MERGE = "received_merge"
    TAG_ADDED = "tag_added"
    TAG_REMOVED = "tag_removed"


class History(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """
    One recorded change of an object.

    attribute/value_from/value_to describe attribute updates; related_o_id
    points at the other ticket of a merge.
    """

    __tablename__ = "histories"

    history_type = Column(Enum(HistoryType, name="historytype"), nullable=False)
    attribute = Column(String(100), nullable=True)
    value_from = Column(Text, nullable=True)
    value_to = Column(Text, nullable=True)
    related_o_id = Column(Integer, nullable=True)
    created_by_id = Column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<History({self.object_type}#{self.o_id}, {self.history_type}, {self.attribute})>"


class Tag(Base, PrimaryKeyMixin, TimestampMixin, ObjectReferenceMixin):
    """Tag on an object."""

    __tablename__ = "tags"

    name = Column(String(250), nullable=False)
    created_by_id = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("object_type", "o_id", "name", name="uq_tags_object_name"),
    )
