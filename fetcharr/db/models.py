"""SQLAlchemy models for database."""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey, JSON, Table, UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import uuid

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


user_servers = Table(
    "user_servers",
    Base.metadata,
    Column("user_id", String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("server_id", String, ForeignKey("server_bindings.id", ondelete="CASCADE"), primary_key=True),
)


class ServerBindingRow(Base):
    """Serveur Plex et ses Radarr/Sonarr associés."""
    __tablename__ = "server_bindings"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    token = Column(String, nullable=False)
    radarr_url = Column(String, nullable=True)
    radarr_api_key = Column(String, nullable=True)
    sonarr_url = Column(String, nullable=True)
    sonarr_api_key = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True)
    role = Column(String, default="user", nullable=False)  # admin, user
    can_add_directly = Column(Boolean, default=False, nullable=False)
    primary_server_id = Column(String, ForeignKey("server_bindings.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    servers = relationship("ServerBindingRow", secondary=user_servers, order_by="ServerBindingRow.name")


class ContentRequest(Base):
    """Demande de contenu soumise à approbation."""
    __tablename__ = "content_requests"
    __table_args__ = (
        Index("idx_requests_lookup", "tmdb_id", "content_type", "server_id"),
    )

    id = Column(String, primary_key=True, default=_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    server_id = Column(String, ForeignKey("server_bindings.id", ondelete="CASCADE"), nullable=False)
    tmdb_id = Column(Integer, nullable=False)
    content_type = Column(String, nullable=False)  # movie, series
    title = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    overview = Column(Text, nullable=True)
    poster_path = Column(String, nullable=True)
    status = Column(String, default="pending", nullable=False, index=True)  # pending, approved, rejected, downloaded
    seasons = Column(JSON, nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    requester = relationship("User", foreign_keys=[user_id])
    processor = relationship("User", foreign_keys=[processed_by])
    server = relationship("ServerBindingRow")


class TrackedItem(Base):
    """Élément poussé vers un gestionnaire (que l'envoi ait réussi ou non)."""
    __tablename__ = "tracked_items"
    __table_args__ = (
        UniqueConstraint("server_id", "content_type", "tmdb_id", name="uq_tracked_item"),
    )

    id = Column(String, primary_key=True, default=_uuid)
    server_id = Column(String, ForeignKey("server_bindings.id", ondelete="CASCADE"), nullable=False, index=True)
    content_type = Column(String, nullable=False)
    tmdb_id = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    overview = Column(Text, nullable=True)
    poster_path = Column(String, nullable=True)
    seasons = Column(JSON, nullable=True)
    added_by = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    server = relationship("ServerBindingRow")
    adder = relationship("User", foreign_keys=[added_by])


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User")
