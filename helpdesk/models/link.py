"""
Link model.

WHY: Links relate two objects (normally two tickets) in a direction:
"normal" links are peers, "parent"/"child" express hierarchy. Links live
outside the tickets they connect and are rewritten in place when a ticket
is merged.
"""

import enum

from sqlalchemy import Column, Integer, String, Enum, Index

from helpdesk.models.base import Base, TimestampMixin, PrimaryKeyMixin


class LinkType(str, enum.Enum):
    NORMAL = "normal"
    PARENT = "parent"
    CHILD = "child"


class Link(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Directed link between two objects.

    source_object/target_object hold the object name ("Ticket"),
    source_value/target_value hold the object ids.
    """

    __tablename__ = "links"

    link_type = Column(Enum(LinkType, name="linktype"), nullable=False, default=LinkType.NORMAL)

    source_object = Column(String(100), nullable=False, default="Ticket")
    source_value = Column(Integer, nullable=False)
    target_object = Column(String(100), nullable=False, default="Ticket")
    target_value = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_links_source", "source_object", "source_value"),
        Index("ix_links_target", "target_object", "target_value"),
    )

    def __repr__(self) -> str:
        return (
            f"<Link(id={self.id}, {self.source_object}#{self.source_value} "
            f"-{self.link_type}-> {self.target_object}#{self.target_value})>"
        )
