# control-plane/core/ext_clients.py
"""
External Client Directory
Peers that reach the mesh only through one ingress gateway node
"""

from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from database.models import ExtClient
from .directory import node_directory
from .exceptions import CascadeError, ControlPlaneError, NotFoundError, PersistenceError, ValidationError
from .store import save, remove

logger = logging.getLogger(__name__)


class ExtClientManager:
    """
    External client lookups and the gateway deletion cascade
    """

    def get_network_ext_clients(self, db: Session, netid: str) -> List[ExtClient]:
        """
        All external clients of a network (empty list when there are none)

        Raises:
            PersistenceError: If the clients cannot be read
        """
        try:
            return db.query(ExtClient).filter(ExtClient.network == netid).order_by(ExtClient.client_id).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read external clients of {netid}: {e}")
            raise PersistenceError(
                f"Failed to read external clients of network {netid}",
                details={"reason": str(e)}
            ) from e

    def get_ext_client(self, db: Session, netid: str, client_id: str) -> ExtClient:
        client = db.get(ExtClient, {"client_id": client_id, "network": netid})
        if client is None:
            raise NotFoundError(
                f"External client {client_id} not found in {netid}",
                details={"client_id": client_id, "netid": netid}
            )
        return client

    def create_ext_client(
        self,
        db: Session,
        netid: str,
        client_id: str,
        ingress_gateway_id: str,
        address: Optional[str] = None,
        public_key: Optional[str] = None
    ) -> ExtClient:
        """
        Attach an external client to an ingress gateway

        Raises:
            NotFoundError: If the gateway node does not exist
            ValidationError: If the node is not an ingress gateway of netid,
                or the client id is taken
        """
        gateway = node_directory.get_node_by_id(db, ingress_gateway_id)
        if gateway.network != netid or not gateway.is_ingress_gateway:
            raise ValidationError(
                f"Node {ingress_gateway_id} is not an ingress gateway of {netid}",
                details={"node_id": ingress_gateway_id, "netid": netid}
            )
        if db.get(ExtClient, {"client_id": client_id, "network": netid}) is not None:
            raise ValidationError(
                f"External client {client_id} already exists in {netid}",
                details={"client_id": client_id}
            )

        client = ExtClient(
            client_id=client_id,
            network=netid,
            ingress_gateway_id=ingress_gateway_id,
            address=address,
            public_key=public_key,
            enabled=True,
        )
        save(db, client, action=f"create external client {client_id}")
        db.refresh(client)

        logger.info(f"External client {client_id} attached to gateway {ingress_gateway_id}")
        return client

    def delete_ext_client(self, db: Session, netid: str, client_id: str) -> None:
        """Delete one external client"""
        client = self.get_ext_client(db, netid, client_id)
        remove(db, client, action=f"delete external client {client_id}")
        logger.info(f"External client deleted: {client_id} ({netid})")

    def delete_gateway_ext_clients(self, db: Session, gateway_id: str, netid: str) -> int:
        """
        Delete every external client owned by an ingress gateway

        A client that fails to delete is logged and skipped.

        Returns:
            Number of clients deleted

        Raises:
            CascadeError: If the client list cannot be read
        """
        try:
            clients = self.get_network_ext_clients(db, netid)
        except PersistenceError as e:
            raise CascadeError(
                f"Cannot enumerate external clients of gateway {gateway_id}",
                details=e.details
            ) from e

        deleted = 0
        for client in clients:
            if client.ingress_gateway_id != gateway_id:
                continue
            client_id = client.client_id
            try:
                self.delete_ext_client(db, netid, client_id)
                deleted += 1
            except ControlPlaneError as e:
                logger.warning(f"Failed to remove external client {client_id}: {e}")
                continue

        logger.info(f"Removed {deleted} external clients of gateway {gateway_id}")
        return deleted


# Singleton instance
ext_client_manager = ExtClientManager()
