"""Tests for gateway role provisioning against the record store."""
import json
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from core.directory import node_directory
from core.exceptions import NotFoundError, PersistenceError, UnsupportedOSError, ValidationError
from core.gateway_manager import gateway_manager
from core.locks import node_locks
from core.rules import transition as real_transition
from database.models import AuditLog, Node
from schemas.gateway import EgressGatewayRequest

IPT_UP = (
    "iptables -A FORWARD -i nm-skynet -j ACCEPT; "
    "iptables -A FORWARD -o nm-skynet -j ACCEPT; "
    "iptables -t nat -A POSTROUTING -o nm-skynet -j MASQUERADE"
)
IPT_DOWN = (
    "iptables -D FORWARD -i nm-skynet -j ACCEPT; "
    "iptables -D FORWARD -o nm-skynet -j ACCEPT; "
    "iptables -t nat -D POSTROUTING -o nm-skynet -j MASQUERADE"
)


def egress(node, **overrides):
    fields = dict(
        node_id=node.id,
        net_id=node.network,
        ranges=["192.168.1.0/24"],
        interface="nm-skynet",
    )
    fields.update(overrides)
    return EgressGatewayRequest(**fields)


class TestCreateEgressGateway:
    """Tests for GatewayManager.create_egress_gateway"""

    def test_linux_iptables(self, db_session, make_node):
        node = make_node()
        result = gateway_manager.create_egress_gateway(db_session, egress(node))

        assert result.is_egress_gateway is True
        assert result.is_ingress_gateway is False
        assert result.egress_ranges == ["192.168.1.0/24"]
        assert result.egress_gateway_nat_enabled is True
        assert result.egress_gateway_interface == "nm-skynet"
        assert result.post_up == IPT_UP
        assert result.post_down == IPT_DOWN

    def test_nftables_backend_selected(self, db_session, make_node):
        node = make_node(nftables=True)
        result = gateway_manager.create_egress_gateway(db_session, egress(node))
        assert result.post_up.startswith("nft add rule ip filter FORWARD")
        assert "iptables" not in result.post_up

    def test_freebsd_uses_ipfw(self, db_session, make_node):
        node = make_node(os="freebsd", interface="nm-skynet")
        result = gateway_manager.create_egress_gateway(db_session, egress(node, interface="em0"))
        assert result.post_up.startswith("kldload ipfw ipfw_nat ; ")
        assert "ipfw nat 1 config if em0" in result.post_up
        assert result.post_down == "ipfw delete 64000 ; ipfw delete 65534 ; kldunload ipfw_nat ipfw"

    @pytest.mark.parametrize("os_name", ["darwin", "windows"])
    def test_unsupported_os(self, db_session, make_node, os_name):
        node = make_node(os=os_name)
        with pytest.raises(UnsupportedOSError):
            gateway_manager.create_egress_gateway(db_session, egress(node))

        db_session.refresh(node)
        assert node.is_egress_gateway is False
        assert node.post_up == ""

    def test_unsupported_os_checked_before_request_fields(self, db_session, make_node):
        node = make_node(os="darwin")
        with pytest.raises(UnsupportedOSError):
            gateway_manager.create_egress_gateway(db_session, egress(node, ranges=[], interface=""))

    @pytest.mark.parametrize("overrides", [
        {"ranges": []},
        {"interface": ""},
        {"ranges": [], "interface": ""},
    ])
    def test_empty_fields_rejected(self, db_session, make_node, overrides):
        node = make_node()
        with pytest.raises(ValidationError):
            gateway_manager.create_egress_gateway(db_session, egress(node, **overrides))

        db_session.refresh(node)
        assert node.is_egress_gateway is False
        assert node.pull_changes is False

    def test_missing_node(self, db_session, network):
        request = EgressGatewayRequest(
            node_id="ghost", net_id="skynet", ranges=["192.168.1.0/24"], interface="eth0"
        )
        with pytest.raises(NotFoundError):
            gateway_manager.create_egress_gateway(db_session, request)

    def test_node_in_other_network(self, db_session, make_node):
        node = make_node()
        with pytest.raises(NotFoundError):
            gateway_manager.create_egress_gateway(db_session, egress(node, net_id="othernet"))

    def test_nat_disabled(self, db_session, make_node):
        node = make_node()
        result = gateway_manager.create_egress_gateway(db_session, egress(node, nat_enabled=False))
        assert result.egress_gateway_nat_enabled is False
        assert "MASQUERADE" not in result.post_up
        assert "MASQUERADE" not in result.post_down

    def test_nat_defaults_to_enabled(self, db_session, make_node):
        node = make_node()
        result = gateway_manager.create_egress_gateway(db_session, egress(node, nat_enabled=None))
        assert result.egress_gateway_nat_enabled is True
        assert "MASQUERADE" in result.post_up

    def test_request_override(self, db_session, make_node):
        node = make_node()
        result = gateway_manager.create_egress_gateway(
            db_session, egress(node, post_up="custom-up", post_down="custom-down")
        )
        assert result.post_up == "custom-up"
        assert result.post_down == "custom-down"

    def test_existing_custom_rules_kept(self, db_session, make_node):
        node = make_node(post_up="echo hello")
        result = gateway_manager.create_egress_gateway(db_session, egress(node))
        assert result.post_up == "echo hello; " + IPT_UP

    def test_repeated_create_is_idempotent(self, db_session, make_node):
        node = make_node(post_up="echo hello")
        first = gateway_manager.create_egress_gateway(db_session, egress(node))
        up, down = first.post_up, first.post_down

        second = gateway_manager.create_egress_gateway(db_session, egress(node))
        assert second.post_up == up
        assert second.post_down == down

    def test_recreate_without_nat_drops_masquerade(self, db_session, make_node):
        node = make_node(post_up="echo hello")
        gateway_manager.create_egress_gateway(db_session, egress(node))

        result = gateway_manager.create_egress_gateway(db_session, egress(node, nat_enabled=False))
        assert result.egress_gateway_nat_enabled is False
        assert result.post_up == (
            "echo hello; "
            "iptables -A FORWARD -i nm-skynet -j ACCEPT; "
            "iptables -A FORWARD -o nm-skynet -j ACCEPT"
        )
        assert "MASQUERADE" not in result.post_down

    def test_recreate_on_new_interface_replaces_masquerade(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node))

        result = gateway_manager.create_egress_gateway(db_session, egress(node, interface="eth0"))
        assert result.egress_gateway_interface == "eth0"
        assert "POSTROUTING -o eth0 -j MASQUERADE" in result.post_up
        assert "POSTROUTING -o nm-skynet" not in result.post_up
        assert "POSTROUTING -o nm-skynet" not in result.post_down

    def test_network_nodes_flagged_to_pull(self, db_session, make_node):
        node = make_node()
        other = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node))

        for record in (node, other):
            db_session.refresh(record)
            assert record.pull_changes is True
            assert record.config_version == 2

    def test_commit_failure_leaves_node_unchanged(self, db_session, make_node):
        node = make_node()
        with patch.object(db_session, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(PersistenceError):
                gateway_manager.create_egress_gateway(db_session, egress(node))

        stored = db_session.get(Node, node.id)
        db_session.refresh(stored)
        assert stored.is_egress_gateway is False
        assert stored.post_up == ""
        assert stored.pull_changes is False
        assert stored.config_version == 1

    def test_lock_held_while_transitioning(self, db_session, make_node):
        node = make_node()
        observed = []

        def checking_transition(target, change, gateway=None):
            observed.append(node_locks.is_held(target.id))
            return real_transition(target, change, gateway)

        with patch("core.gateway_manager.transition", side_effect=checking_transition):
            gateway_manager.create_egress_gateway(db_session, egress(node))

        assert observed == [True]
        assert node_locks.is_held(node.id) is False

    def test_lock_released_on_failure(self, db_session, make_node):
        node = make_node(os="windows")
        with pytest.raises(UnsupportedOSError):
            gateway_manager.create_egress_gateway(db_session, egress(node))
        assert node_locks.is_held(node.id) is False

    def test_audit_log_written(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node), admin_id="admin")

        log = db_session.query(AuditLog).filter(AuditLog.target_id == node.id).one()
        assert log.event_type == "egress_gateway"
        assert log.event_action == "create"
        assert log.actor_type == "admin"
        assert json.loads(log.details)["role_state"] == "EGRESS"


class TestDeleteEgressGateway:
    """Tests for GatewayManager.delete_egress_gateway"""

    def test_clears_role_and_rules(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node))
        result = gateway_manager.delete_egress_gateway(db_session, "skynet", node.id)

        assert result.is_egress_gateway is False
        assert result.egress_ranges == []
        assert result.egress_gateway_interface is None
        assert result.post_up == ""
        assert result.post_down == ""

    def test_keeps_ingress_rules(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)
        gateway_manager.create_egress_gateway(db_session, egress(node, interface="eth0"))

        result = gateway_manager.delete_egress_gateway(db_session, "skynet", node.id)
        assert result.is_ingress_gateway is True
        assert result.is_egress_gateway is False
        assert result.post_up == IPT_UP
        assert result.post_down == IPT_DOWN

    def test_flags_network_to_pull(self, db_session, make_node):
        node = make_node()
        gateway_manager.delete_egress_gateway(db_session, "skynet", node.id)
        db_session.refresh(node)
        assert node.pull_changes is True

    def test_dropped_custom_rules_recorded(self, db_session, make_node):
        node = make_node(post_up="echo hello")
        gateway_manager.create_egress_gateway(db_session, egress(node))
        gateway_manager.delete_egress_gateway(db_session, "skynet", node.id)

        log = (
            db_session.query(AuditLog)
            .filter(AuditLog.event_action == "delete")
            .one()
        )
        assert json.loads(log.details)["dropped_clauses"] == ["echo hello"]
        assert log.actor_type == "system"

    def test_missing_node(self, db_session, network):
        with pytest.raises(NotFoundError):
            gateway_manager.delete_egress_gateway(db_session, "skynet", "ghost")


class TestCreateIngressGateway:
    """Tests for GatewayManager.create_ingress_gateway"""

    def test_linux(self, db_session, make_node):
        node = make_node()
        result = gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        assert result.is_ingress_gateway is True
        assert result.ingress_gateway_range == "10.10.10.0/24"
        assert result.udp_hole_punch is False
        assert result.post_up == IPT_UP
        assert result.post_down == IPT_DOWN

    def test_freebsd_rejected(self, db_session, make_node):
        node = make_node(os="freebsd")
        with pytest.raises(UnsupportedOSError):
            gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        db_session.refresh(node)
        assert node.is_ingress_gateway is False
        assert node.udp_hole_punch is True

    def test_does_not_flag_pull_changes(self, db_session, make_node, network):
        node = make_node()
        before = network.nodes_last_modified
        gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        db_session.refresh(node)
        db_session.refresh(network)
        assert node.pull_changes is False
        assert network.nodes_last_modified >= before

    def test_merges_with_egress_without_duplicates(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node))
        result = gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        assert result.is_egress_gateway is True
        assert result.is_ingress_gateway is True
        assert result.post_up == IPT_UP

    def test_missing_network(self, db_session, make_node):
        node = make_node()
        with pytest.raises(NotFoundError):
            gateway_manager.create_ingress_gateway(db_session, "othernet", node.id)


class TestDeleteIngressGateway:
    """Tests for GatewayManager.delete_ingress_gateway"""

    def test_restores_hole_punch_default(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)
        result = gateway_manager.delete_ingress_gateway(db_session, "skynet", node.id)

        assert result.is_ingress_gateway is False
        assert result.ingress_gateway_range is None
        assert result.udp_hole_punch is True
        assert result.post_up == ""

    def test_restores_network_default_when_off(self, db_session, network):
        node_directory.create_network(
            db_session, netid="quietnet", address_range="10.20.0.0/16", default_udp_hole_punch=False
        )
        node = node_directory.create_node(db_session, netid="quietnet", name="quiet-1", node_id="quiet-1")
        gateway_manager.create_ingress_gateway(db_session, "quietnet", node.id)
        result = gateway_manager.delete_ingress_gateway(db_session, "quietnet", node.id)

        assert result.udp_hole_punch is False

    def test_keeps_egress_rules(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node, interface="eth0", nat_enabled=False))
        gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        result = gateway_manager.delete_ingress_gateway(db_session, "skynet", node.id)
        assert result.is_egress_gateway is True
        assert result.post_up == (
            "iptables -A FORWARD -i nm-skynet -j ACCEPT; "
            "iptables -A FORWARD -o nm-skynet -j ACCEPT"
        )

    def test_both_roles_removed_in_turn(self, db_session, make_node):
        node = make_node()
        gateway_manager.create_egress_gateway(db_session, egress(node))
        gateway_manager.create_ingress_gateway(db_session, "skynet", node.id)

        gateway_manager.delete_egress_gateway(db_session, "skynet", node.id)
        result = gateway_manager.delete_ingress_gateway(db_session, "skynet", node.id)

        assert result.is_egress_gateway is False
        assert result.is_ingress_gateway is False
        assert (result.post_up, result.post_down) == ("", "")
