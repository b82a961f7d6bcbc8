# control-plane/core/rules.py
"""
Rule Composer - Gateway forwarding/NAT command generation

Produces the PostUp/PostDown command text an agent runs when its overlay
interface comes up or goes down. Nothing here touches the database or the
host; every function is deterministic in its inputs.

Command text is modelled as an ordered set of named clauses (RuleSet).
Merging a freshly generated set into text already stored on a node appends
only the clauses the node does not have yet, compared on whitespace-normalized
command text, so repeated create calls never double a rule.
"""

from enum import Enum, Flag
from typing import Iterable, List, NamedTuple, Optional, Tuple
import logging

from database.models import OperatingSystem
from .exceptions import UnsupportedOSError, ValidationError

logger = logging.getLogger(__name__)


class Backend(str, Enum):
    """Host packet-filtering tool that realizes the rules"""
    NFTABLES = "nftables"
    IPTABLES = "iptables"
    IPFW = "ipfw"


class RoleState(Flag):
    """Composite gateway role state of a node"""
    NONE = 0
    INGRESS = 1
    EGRESS = 2
    BOTH = INGRESS | EGRESS

    @classmethod
    def of(cls, node) -> "RoleState":
        state = cls.NONE
        if node.is_ingress_gateway:
            state |= cls.INGRESS
        if node.is_egress_gateway:
            state |= cls.EGRESS
        return state


class RoleChange(str, Enum):
    """Requested gateway role mutation"""
    CREATE_INGRESS = "create_ingress"
    DELETE_INGRESS = "delete_ingress"
    CREATE_EGRESS = "create_egress"
    DELETE_EGRESS = "delete_egress"


class RuleClause(NamedTuple):
    """
    A single command in PostUp/PostDown text

    trailer overrides the text that follows the command when the set is
    rendered with trailing separators.
    """
    name: str
    command: str
    trailer: Optional[str] = None

    @property
    def key(self) -> str:
        return " ".join(self.command.split())


class RuleSet:
    """
    Ordered, duplicate-free sequence of rule clauses

    With trailing=False clauses are joined by separator; with trailing=True
    every clause is followed by its trailer (separator by default).
    A set parsed from stored text renders back to that exact text.
    """

    def __init__(
        self,
        clauses: Iterable[RuleClause] = (),
        separator: str = "; ",
        trailing: bool = False,
        text: Optional[str] = None
    ):
        self._clauses: List[RuleClause] = []
        seen = set()
        for clause in clauses:
            if clause.key and clause.key not in seen:
                seen.add(clause.key)
                self._clauses.append(clause)
        self.separator = separator
        self.trailing = trailing
        self._text = text

    @classmethod
    def parse(cls, text: Optional[str]) -> "RuleSet":
        """Split stored command text on ';' into custom clauses"""
        clauses = [
            RuleClause("custom", part.strip())
            for part in (text or "").split(";")
            if part.strip()
        ]
        return cls(clauses, text=text)

    def __iter__(self):
        return iter(self._clauses)

    def __len__(self) -> int:
        return len(self._clauses)

    def __contains__(self, clause: RuleClause) -> bool:
        return clause.key in self.keys()

    def keys(self) -> List[str]:
        return [clause.key for clause in self._clauses]

    def names(self) -> List[str]:
        return [clause.name for clause in self._clauses]

    def without(self, other: "RuleSet") -> "RuleSet":
        """Clauses of this set that are not in other, in this set's syntax"""
        return RuleSet(
            [clause for clause in self._clauses if clause not in other],
            separator=self.separator,
            trailing=self.trailing
        )

    def render(self) -> str:
        if self._text is not None:
            return self._text
        if self.trailing:
            return "".join(
                clause.command + (self.separator if clause.trailer is None else clause.trailer)
                for clause in self._clauses
            )
        return self.separator.join(clause.command for clause in self._clauses)

    def __repr__(self):
        return f"<RuleSet({self.names()})>"


class Transition(NamedTuple):
    """Result of applying a RoleChange to a node"""
    state: RoleState
    post_up: str
    post_down: str
    dropped: Tuple[str, ...] = ()


# === Backend selection ===

def select_backend(os: str, nftables_present: bool) -> Backend:
    """
    Pick the packet-filtering backend for a node

    linux + nftables -> nftables, linux -> iptables, freebsd -> ipfw
    """
    if os == OperatingSystem.LINUX.value:
        return Backend.NFTABLES if nftables_present else Backend.IPTABLES
    if os == OperatingSystem.FREEBSD.value:
        return Backend.IPFW
    raise UnsupportedOSError(f"{os} is unsupported for gateways", details={"os": os})


# === Clause generation ===

# (name, template, trailer), (add verb, delete verb); nat clause is last
_FORWARDING = {
    Backend.NFTABLES: (
        [
            ("forward-in", "nft {verb} rule ip filter FORWARD iifname {interface} counter accept", None),
            ("forward-out", "nft {verb} rule ip filter FORWARD oifname {interface} counter accept", None),
            ("masquerade", "nft {verb} rule ip nat POSTROUTING oifname {interface} counter masquerade", " ;"),
        ],
        ("add", "delete"),
    ),
    Backend.IPTABLES: (
        [
            ("forward-in", "iptables {verb} FORWARD -i {interface} -j ACCEPT", None),
            ("forward-out", "iptables {verb} FORWARD -o {interface} -j ACCEPT", None),
            ("masquerade", "iptables -t nat {verb} POSTROUTING -o {interface} -j MASQUERADE", None),
        ],
        ("-A", "-D"),
    ),
}

# separator, activation trailing, deactivation trailing
_SYNTAX = {
    Backend.NFTABLES: (" ; ", True, True),
    Backend.IPTABLES: ("; ", False, False),
    Backend.IPFW: (" ; ", True, False),
}


def _ipfw_clauses(interface: str, nat: bool = True) -> Tuple[List[RuleClause], List[RuleClause]]:
    up = [RuleClause("load-modules", "kldload ipfw ipfw_nat" if nat else "kldload ipfw")]
    up.append(RuleClause("disable-one-pass", "ipfw disable one_pass"))
    if nat:
        up.append(RuleClause("nat-config", f"ipfw nat 1 config if {interface} same_ports unreg_only reset"))
    up.append(RuleClause("reassemble", "ipfw add 64000 reass all from any to any in"))
    if nat:
        up.append(RuleClause("nat-in", f"ipfw add 64000 nat 1 ip from any to any in via {interface}"))
    up.append(RuleClause("check-state", "ipfw add 64000 check-state"))
    if nat:
        up.append(RuleClause("nat-out", f"ipfw add 64000 nat 1 ip from any to any out via {interface}"))
    up.append(RuleClause("allow-all", "ipfw add 65534 allow ip from any to any"))

    down = [
        RuleClause("delete-nat-rules", "ipfw delete 64000"),
        RuleClause("delete-allow-all", "ipfw delete 65534"),
        RuleClause("unload-modules", "kldunload ipfw_nat ipfw" if nat else "kldunload ipfw"),
    ]
    return up, down


def forwarding_rules(
    backend: Backend,
    interface: str,
    nat_interface: Optional[str] = None,
    nat: bool = True
) -> Tuple[RuleSet, RuleSet]:
    """
    Build activation/deactivation rule sets for one gateway role

    Args:
        backend: Packet-filtering backend
        interface: Overlay interface the forward-accept rules match on
        nat_interface: Interface iptables masquerades behind and the ipfw
                       NAT instance binds to (defaults to interface);
                       nftables always masquerades on the overlay interface
        nat: Whether to include masquerade/NAT clauses

    Returns:
        Tuple of (post_up, post_down) rule sets
    """
    nat_interface = nat_interface or interface
    separator, up_trailing, down_trailing = _SYNTAX[backend]

    if backend is Backend.IPFW:
        up, down = _ipfw_clauses(nat_interface, nat=nat)
    else:
        templates, (add, delete) = _FORWARDING[backend]
        up, down = [], []
        for name, template, trailer in templates:
            target = interface
            if name == "masquerade":
                if not nat:
                    continue
                if backend is Backend.IPTABLES:
                    target = nat_interface
            up.append(RuleClause(name, template.format(verb=add, interface=target), trailer))
            down.append(RuleClause(name, template.format(verb=delete, interface=target), trailer))

    return (
        RuleSet(up, separator=separator, trailing=up_trailing),
        RuleSet(down, separator=separator, trailing=down_trailing),
    )


def merge_rule_text(existing: Optional[str], generated: RuleSet) -> str:
    """
    Merge generated clauses into text already stored on a node

    Existing text is kept as-is; only clauses it lacks are appended.
    """
    if not existing or not existing.strip():
        return generated.render()

    missing = generated.without(RuleSet.parse(existing))
    if not missing:
        return existing

    head = existing.rstrip().rstrip(";").rstrip()
    return f"{head}; {missing.render()}"


# === Validation ===

def validate_egress_gateway(gateway) -> None:
    """Reject an egress request with no ranges or no interface"""
    if not gateway.ranges:
        raise ValidationError("IP ranges cannot be empty", details={"field": "ranges"})
    if not gateway.interface:
        raise ValidationError("interface cannot be empty", details={"field": "interface"})


# === Composition ===

def _egress_nat_enabled(gateway) -> bool:
    return gateway.nat_enabled is not False


def _current_egress_rules(node, backend: Backend) -> Tuple[RuleSet, RuleSet]:
    """Rule sets the node's stored egress configuration generates"""
    return forwarding_rules(
        backend,
        node.interface,
        nat_interface=node.egress_gateway_interface,
        nat=bool(node.egress_gateway_nat_enabled)
    )


def _strip_current_egress(node, backend: Backend) -> Tuple[str, str]:
    """
    Node text without the clauses of its current egress role

    Clauses the ingress role also generates stay when the node holds it.
    Text with nothing to strip is returned unchanged.
    """
    egress_up, egress_down = _current_egress_rules(node, backend)
    if node.is_ingress_gateway and node.os == OperatingSystem.LINUX.value:
        ingress_up, ingress_down = forwarding_rules(backend, node.interface, nat=True)
        egress_up, egress_down = egress_up.without(ingress_up), egress_down.without(ingress_down)

    stripped = []
    for text, generated in ((node.post_up, egress_up), (node.post_down, egress_down)):
        existing = RuleSet.parse(text)
        remaining = existing.without(generated)
        stripped.append(text if len(remaining) == len(existing) else remaining.render())
    return stripped[0], stripped[1]


def compose_egress_rules(node, gateway) -> Tuple[str, str]:
    """
    PostUp/PostDown for a node taking the egress role

    Explicit post_up/post_down on the request replace the generated text;
    the result is then merged with whatever the node already carries.
    A node that is already an egress gateway has its previous egress
    clauses replaced, not merged.
    """
    backend = select_backend(node.os, node.is_nftables_present)
    logger.debug(f"Creating egress gateway on {node.id} using {backend.value}")

    post_up, post_down = forwarding_rules(
        backend,
        node.interface,
        nat_interface=gateway.interface,
        nat=_egress_nat_enabled(gateway)
    )
    if gateway.post_up:
        post_up = RuleSet.parse(gateway.post_up)
    if gateway.post_down:
        post_down = RuleSet.parse(gateway.post_down)

    existing_up, existing_down = node.post_up, node.post_down
    if node.is_egress_gateway:
        existing_up, existing_down = _strip_current_egress(node, backend)

    return merge_rule_text(existing_up, post_up), merge_rule_text(existing_down, post_down)


def compose_ingress_rules(node) -> Tuple[str, str]:
    """PostUp/PostDown for a node taking the ingress role (linux only)"""
    if node.os != OperatingSystem.LINUX.value:
        raise UnsupportedOSError(
            f"{node.os} is unsupported for ingress gateways",
            details={"os": node.os}
        )
    backend = select_backend(node.os, node.is_nftables_present)
    logger.debug(f"Creating ingress gateway on {node.id} using {backend.value}")

    post_up, post_down = forwarding_rules(backend, node.interface, nat=True)
    return merge_rule_text(node.post_up, post_up), merge_rule_text(node.post_down, post_down)


def compose_overlap_preserving_rules(node, retained_role: RoleState) -> Tuple[str, str]:
    """
    Recompute the retained role's PostUp/PostDown from scratch

    Used when the other role is deleted. Ingress on a non-linux node has
    nothing to regenerate.
    """
    if retained_role is RoleState.INGRESS:
        if node.os != OperatingSystem.LINUX.value:
            return "", ""
        backend = select_backend(node.os, node.is_nftables_present)
        post_up, post_down = forwarding_rules(backend, node.interface, nat=True)
    elif retained_role is RoleState.EGRESS:
        backend = select_backend(node.os, node.is_nftables_present)
        post_up, post_down = _current_egress_rules(node, backend)
    else:
        raise ValueError(f"Cannot preserve rules for role state {retained_role}")

    logger.debug(f"Preserving {retained_role.name.lower()} rules on {node.id} using {backend.value}")
    return post_up.render(), post_down.render()


def _known_gateway_clauses(node) -> RuleSet:
    """Every clause either gateway role could have generated for node"""
    try:
        backend = select_backend(node.os, node.is_nftables_present)
    except UnsupportedOSError:
        return RuleSet()

    known: List[RuleClause] = []
    for nat_interface in (node.interface, node.egress_gateway_interface):
        for nat in (True, False):
            post_up, _ = forwarding_rules(backend, node.interface, nat_interface=nat_interface, nat=nat)
            known.extend(post_up)
    return RuleSet(known)


def _dropped_clauses(node) -> Tuple[str, ...]:
    existing = RuleSet.parse(node.post_up)
    return tuple(existing.without(_known_gateway_clauses(node)).keys())


def transition(node, change: RoleChange, gateway=None) -> Transition:
    """
    Apply a role change to the node's composite state

    Pure: reads node attributes, never mutates them.
    Create merges the new role's rules into the node's current text.
    Delete discards the current text and regenerates the retained role,
    if any; clauses no gateway role produced are reported in `dropped`.
    """
    current = RoleState.of(node)

    if change is RoleChange.CREATE_EGRESS:
        if gateway is None:
            raise ValueError("CREATE_EGRESS requires a gateway request")
        post_up, post_down = compose_egress_rules(node, gateway)
        return Transition(current | RoleState.EGRESS, post_up, post_down)

    if change is RoleChange.CREATE_INGRESS:
        post_up, post_down = compose_ingress_rules(node)
        return Transition(current | RoleState.INGRESS, post_up, post_down)

    if change is RoleChange.DELETE_EGRESS:
        state, retained = current & ~RoleState.EGRESS, RoleState.INGRESS
    elif change is RoleChange.DELETE_INGRESS:
        state, retained = current & ~RoleState.INGRESS, RoleState.EGRESS
    else:
        raise ValueError(f"Unknown role change: {change}")

    dropped = _dropped_clauses(node)
    if state & retained:
        post_up, post_down = compose_overlap_preserving_rules(node, retained)
    else:
        post_up, post_down = "", ""
    return Transition(state, post_up, post_down, dropped)
