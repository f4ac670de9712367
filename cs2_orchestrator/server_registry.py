import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from .errors import ValidationError, ConflictError, NotFoundError
from .elo_templates import slugify
from .models import db, Server, Match
from .server_channel import ServerChannel

logger = logging.getLogger(__name__)


class ServerRegistry:
    """
    Game server inventory and exclusive assignment:
    - CRUD with unique host:port
    - compare-and-set assignment of a server to one loaded/live match
    - reachability status independent of match status
    """

    def __init__(self, channel: ServerChannel, status_timeout: float = 2.0):
        self.channel = channel
        self.status_timeout = status_timeout

    def list_servers(self) -> List[Server]:
        return Server.query.order_by(Server.id).all()

    def get_server(self, server_id: str) -> Server:
        server = db.session.get(Server, server_id)
        if server is None:
            raise NotFoundError(f"Server '{server_id}' not found")
        return server

    def _validate(self, data: dict, partial: bool = False):
        for field in ('name', 'host'):
            if not partial or field in data:
                value = data.get(field)
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"Server {field} is required")
        if not partial or 'port' in data:
            port = data.get('port')
            if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
                raise ValidationError('Server port must be an integer between 1 and 65535')
        password = data.get('password')
        if password is not None and not isinstance(password, str):
            raise ValidationError('Server password must be a string')

    def _ensure_unique_address(self, host: str, port: int, exclude_id: str = None):
        query = Server.query.filter_by(host=host, port=port)
        if exclude_id:
            query = query.filter(Server.id != exclude_id)
        if query.first() is not None:
            raise ConflictError(f"A server with address {host}:{port} already exists")

    def create_server(self, data: dict) -> Server:
        self._validate(data)
        server_id = data.get('id') or slugify(data['name'])
        if not server_id:
            raise ValidationError('Server id is required')
        if db.session.get(Server, server_id) is not None:
            raise ConflictError(f"Server '{server_id}' already exists")
        host = data['host'].strip()
        self._ensure_unique_address(host, data['port'])

        server = Server(
            id=server_id,
            name=data['name'].strip(),
            host=host,
            port=data['port'],
            enabled=bool(data.get('enabled', True)),
        )
        server.password = data.get('password')
        db.session.add(server)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"A server with address {host}:{data['port']} already exists")
        logger.info(f"Registered server {server_id} at {host}:{data['port']}")
        return server

    def update_server(self, server_id: str, data: dict) -> Server:
        server = self.get_server(server_id)
        self._validate(data, partial=True)
        host = data['host'].strip() if 'host' in data else server.host
        port = data.get('port', server.port)
        if (host, port) != (server.host, server.port):
            if server.current_match_id is not None:
                raise ConflictError(f"Server '{server_id}' is hosting a match")
            self._ensure_unique_address(host, port, exclude_id=server_id)
        server.host, server.port = host, port
        if 'name' in data:
            server.name = data['name'].strip()
        if 'enabled' in data:
            server.enabled = bool(data['enabled'])
        if 'password' in data:
            server.password = data['password']
        db.session.commit()
        return server

    def delete_server(self, server_id: str):
        server = self.get_server(server_id)
        if server.current_match_id is not None:
            raise ConflictError(f"Server '{server_id}' is hosting a match")
        db.session.delete(server)
        db.session.commit()
        logger.info(f"Deleted server {server_id}")

    # -- exclusive assignment --

    def try_assign(self, server_id: str, match: Match) -> bool:
        """Compare-and-set the server's match pointer; False when the server is taken."""
        result = db.session.execute(
            db.update(Server)
            .where(Server.id == server_id, Server.current_match_id.is_(None), Server.enabled.is_(True))
            .values(current_match_id=match.id)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount != 1:
            return False
        match.server_id = server_id
        return True

    def assign(self, server_id: str, match: Match):
        self.get_server(server_id)
        if not self.try_assign(server_id, match):
            raise ConflictError(f"Server '{server_id}' is unavailable or already hosting a match")
        logger.info(f"Assigned server {server_id} to match {match.slug}")

    def release(self, match: Match):
        if match.server_id is None:
            return
        self.release_server(match.server_id, match)
        match.server_id = None

    def release_server(self, server_id: str, match: Match):
        """Clear the server's pointer only if it still points at this match."""
        db.session.execute(
            db.update(Server)
            .where(Server.id == server_id, Server.current_match_id == match.id)
            .values(current_match_id=None)
            .execution_options(synchronize_session='fetch')
        )
        logger.info(f"Released server {server_id} from match {match.slug}")

    def free_servers(self) -> List[Server]:
        return (
            Server.query.filter(Server.enabled.is_(True), Server.current_match_id.is_(None))
            .order_by(Server.id)
            .all()
        )

    # -- status --

    def check_status(self, server: Server) -> str:
        return 'online' if self.channel.probe(server, self.status_timeout) else 'offline'

    def status_report(self, server: Server, match: Optional[Match] = None) -> dict:
        return {
            'serverId': server.id,
            'status': self.check_status(server),
            'currentMatch': match.slug if match else None,
        }
