"""Synchronise server and user registrations from the YAML config."""
import logging

from sqlalchemy.orm import Session

from fetcharr.config import Config
from fetcharr.db.models import ServerBindingRow, User

logger = logging.getLogger(__name__)


def sync_from_config(db: Session, config: Config) -> None:
    """Crée ou met à jour les serveurs et utilisateurs déclarés dans la config."""
    rows = {}
    for server in config.servers:
        row = db.query(ServerBindingRow).filter(ServerBindingRow.id == server.id).first()
        if row is None:
            row = ServerBindingRow(id=server.id)
            db.add(row)
        row.name = server.name
        row.url = server.url.rstrip("/")
        row.token = server.token
        row.radarr_url = server.radarr.url.rstrip("/") if server.radarr else None
        row.radarr_api_key = server.radarr.api_key if server.radarr else None
        row.sonarr_url = server.sonarr.url.rstrip("/") if server.sonarr else None
        row.sonarr_api_key = server.sonarr.api_key if server.sonarr else None
        rows[server.id] = row

    for entry in config.users:
        unknown = [sid for sid in entry.servers if sid not in rows]
        if unknown:
            raise ValueError(f"User {entry.username} references unknown servers: {', '.join(unknown)}")
        primary = entry.primary_server or (entry.servers[0] if entry.servers else None)
        if primary and primary not in entry.servers:
            raise ValueError(f"Primary server {primary} of {entry.username} is not one of its servers")

        user = db.query(User).filter(User.username == entry.username).first()
        if user is None:
            user = User(username=entry.username)
            db.add(user)
        user.email = entry.email
        user.role = entry.role
        user.can_add_directly = entry.can_add_directly
        user.servers = [rows[sid] for sid in entry.servers]
        user.primary_server_id = primary

    db.commit()
    logger.info(f"Synchronised {len(config.servers)} servers and {len(config.users)} users from config")
