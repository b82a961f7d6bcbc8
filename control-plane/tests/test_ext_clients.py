"""Tests for external clients and the ingress deletion cascade."""
from unittest.mock import patch

import pytest

from core.exceptions import CascadeError, NotFoundError, PersistenceError, ValidationError
from core.ext_clients import ext_client_manager
from core.gateway_manager import gateway_manager


@pytest.fixture
def gateways(db_session, make_node):
    """Two ingress gateways in skynet"""
    first = gateway_manager.create_ingress_gateway(db_session, "skynet", make_node().id)
    second = gateway_manager.create_ingress_gateway(db_session, "skynet", make_node().id)
    return first, second


def attach(db_session, gateway, client_id):
    return ext_client_manager.create_ext_client(
        db_session, netid="skynet", client_id=client_id, ingress_gateway_id=gateway.id
    )


class TestCreateExtClient:
    """Tests for ExtClientManager.create_ext_client"""

    def test_attach_to_gateway(self, db_session, gateways):
        gateway, _ = gateways
        client = ext_client_manager.create_ext_client(
            db_session,
            netid="skynet",
            client_id="laptop",
            ingress_gateway_id=gateway.id,
            address="10.10.10.200"
        )
        assert client.ingress_gateway_id == gateway.id
        assert client.enabled is True
        assert client.address == "10.10.10.200"

    def test_rejects_non_gateway_node(self, db_session, make_node):
        node = make_node()
        with pytest.raises(ValidationError):
            attach(db_session, node, "laptop")

    def test_rejects_duplicate_id(self, db_session, gateways):
        gateway, _ = gateways
        attach(db_session, gateway, "laptop")
        with pytest.raises(ValidationError):
            attach(db_session, gateway, "laptop")

    def test_unknown_gateway(self, db_session, network):
        with pytest.raises(NotFoundError):
            ext_client_manager.create_ext_client(
                db_session, netid="skynet", client_id="laptop", ingress_gateway_id="ghost"
            )


class TestGetNetworkExtClients:
    """Tests for listing external clients"""

    def test_empty_network(self, db_session, network):
        assert ext_client_manager.get_network_ext_clients(db_session, "skynet") == []

    def test_lists_all_gateways(self, db_session, gateways):
        first, second = gateways
        attach(db_session, first, "a")
        attach(db_session, second, "b")
        clients = ext_client_manager.get_network_ext_clients(db_session, "skynet")
        assert [c.client_id for c in clients] == ["a", "b"]


class TestDeleteGatewayExtClients:
    """Tests for the cascade run when an ingress gateway is deleted"""

    def test_only_gateway_clients_removed(self, db_session, gateways):
        first, second = gateways
        for client_id in ("a", "b", "c"):
            attach(db_session, first, client_id)
        attach(db_session, second, "d")

        deleted = ext_client_manager.delete_gateway_ext_clients(db_session, first.id, "skynet")

        assert deleted == 3
        remaining = ext_client_manager.get_network_ext_clients(db_session, "skynet")
        assert [c.client_id for c in remaining] == ["d"]

    def test_per_client_failure_is_skipped(self, db_session, gateways):
        first, _ = gateways
        for client_id in ("a", "b", "c"):
            attach(db_session, first, client_id)

        original = ext_client_manager.delete_ext_client

        def flaky(db, netid, client_id):
            if client_id == "b":
                raise PersistenceError("Failed to delete external client b")
            return original(db, netid, client_id)

        with patch.object(ext_client_manager, "delete_ext_client", side_effect=flaky):
            deleted = ext_client_manager.delete_gateway_ext_clients(db_session, first.id, "skynet")

        assert deleted == 2
        remaining = ext_client_manager.get_network_ext_clients(db_session, "skynet")
        assert [c.client_id for c in remaining] == ["b"]

    def test_enumeration_failure_raises_cascade_error(self, db_session, gateways):
        first, _ = gateways
        with patch.object(
            ext_client_manager,
            "get_network_ext_clients",
            side_effect=PersistenceError("database is locked")
        ):
            with pytest.raises(CascadeError):
                ext_client_manager.delete_gateway_ext_clients(db_session, first.id, "skynet")


class TestIngressDeletionCascade:
    """Cascade behaviour seen through GatewayManager.delete_ingress_gateway"""

    def test_clients_removed_with_gateway(self, db_session, gateways):
        first, second = gateways
        attach(db_session, first, "a")
        attach(db_session, first, "b")
        attach(db_session, second, "c")

        gateway_manager.delete_ingress_gateway(db_session, "skynet", first.id)

        remaining = ext_client_manager.get_network_ext_clients(db_session, "skynet")
        assert [c.client_id for c in remaining] == ["c"]

    def test_per_client_failure_does_not_abort_deletion(self, db_session, gateways):
        first, _ = gateways
        attach(db_session, first, "a")
        attach(db_session, first, "b")

        original = ext_client_manager.delete_ext_client

        def flaky(db, netid, client_id):
            if client_id == "a":
                raise PersistenceError("Failed to delete external client a")
            return original(db, netid, client_id)

        with patch.object(ext_client_manager, "delete_ext_client", side_effect=flaky):
            node = gateway_manager.delete_ingress_gateway(db_session, "skynet", first.id)

        assert node.is_ingress_gateway is False
        remaining = ext_client_manager.get_network_ext_clients(db_session, "skynet")
        assert [c.client_id for c in remaining] == ["a"]

    def test_enumeration_failure_keeps_gateway(self, db_session, gateways):
        first, _ = gateways
        with patch.object(
            ext_client_manager,
            "get_network_ext_clients",
            side_effect=PersistenceError("database is locked")
        ):
            with pytest.raises(CascadeError):
                gateway_manager.delete_ingress_gateway(db_session, "skynet", first.id)

        db_session.refresh(first)
        assert first.is_ingress_gateway is True
        assert first.udp_hole_punch is False
