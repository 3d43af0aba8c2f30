from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set
import ipaddress
import re
import time


NODE_KINDS = (
    "NRF",
    "AMF",
    "SMF",
    "UPF",
    "gNB",
    "UE",
    "AUSF",
    "UDM",
    "PCF",
    "NSSF",
    "UDR",
    "MySQL",
    "ext-dn",
)

STATUSES = ("starting", "stable", "failed")

ORIENTATIONS = ("horizontal", "vertical")

# Auto-assignment search space for NF addresses and ports.
AUTO_SUBNETS = ("192.168.1", "192.168.2", "192.168.3", "192.168.4")
AUTO_PORTS = range(8080, 10000)


class TopologyError(Exception):
    pass


def _norm_uid(uid: str) -> str:
    return (uid or "").strip()


def subnet_of(ip: Optional[str]) -> str:
    """Return the /24 prefix ("192.168.1") of an address, or "" if malformed."""
    if not ip:
        return ""
    parts = str(ip).split(".")
    if len(parts) != 4:
        return ""
    return ".".join(parts[:3])


def subscriber_problems(imsi: Any, key: Any, opc: Any, dnn: Any, sst: Any) -> List[str]:
    problems: List[str] = []
    if not re.fullmatch(r"\d{15}", str(imsi or "")):
        problems.append("IMSI must be exactly 15 digits.")
    if not re.fullmatch(r"[0-9a-fA-F]{32}", str(key or "")):
        problems.append("Key must be exactly 32 hexadecimal characters.")
    if not re.fullmatch(r"[0-9a-fA-F]{32}", str(opc or "")):
        problems.append("OPc must be exactly 32 hexadecimal characters.")
    if not str(dnn or "").strip():
        problems.append("DNN must not be empty.")
    try:
        if int(sst) <= 0:
            problems.append("SST must be a positive integer.")
    except (TypeError, ValueError):
        problems.append("SST must be a positive integer.")
    return problems


# ───────────────────────────── Config records ─────────────────────────────


@dataclass
class PoolAllocation:
    ue_id: str
    ue_name: str
    ip: str
    assigned_at: float


@dataclass
class AddressPool:
    """UPF tun0 interface and the UE address pool behind it."""

    network: str = "10.0.0.0/28"
    gateway_ip: str = "10.0.0.1"
    netmask: str = "255.255.255.0"
    interface_name: str = "tun0"
    first_host: int = 2
    last_host: int = 14
    next_available: int = 2
    # ip -> allocation
    assigned: Dict[str, PoolAllocation] = field(default_factory=dict)

    def host_address(self, host: int) -> str:
        net = ipaddress.IPv4Network(self.network, strict=False)
        return str(net.network_address + host)

    def contains(self, ip: str) -> bool:
        try:
            addr = ipaddress.IPv4Address(ip)
        except ValueError:
            return False
        lo = ipaddress.IPv4Address(self.host_address(self.first_host))
        hi = ipaddress.IPv4Address(self.host_address(self.last_host))
        return lo <= addr <= hi

    def address_of(self, ue_id: str) -> Optional[str]:
        for ip, a in self.assigned.items():
            if a.ue_id == ue_id:
                return ip
        return None


@dataclass
class TunnelInterface:
    name: str
    ip: str
    gateway: str
    netmask: str = "255.255.255.0"
    destination: str = ""
    mtu: int = 1500
    flags: str = "UP,POINTOPOINT,RUNNING,NOARP,MULTICAST"
    created_at: float = field(default_factory=time.time)


@dataclass
class PDUSessionRecord:
    session_id: int
    upf_id: str
    assigned_ip: str
    status: str = "established"
    established_at: float = field(default_factory=time.time)


@dataclass
class NodeConfig:
    ip: Optional[str] = None
    port: Optional[int] = None
    http_protocol: str = "HTTP/2"
    capacity: int = 1000
    load: int = 0

    # UE-only subscriber profile
    subscriber_imsi: Optional[str] = None
    subscriber_key: Optional[str] = None
    subscriber_opc: Optional[str] = None
    subscriber_dnn: Optional[str] = None
    subscriber_sst: Optional[int] = None

    # UE-only session side effects
    pdu_session: Optional[PDUSessionRecord] = None
    pdu_session_state: Optional[str] = None
    tun_interface: Optional[TunnelInterface] = None

    # UPF-only
    tun0: Optional[AddressPool] = None


@dataclass
class Node:
    uid: str
    kind: str
    name: str
    x: float = 0.0
    y: float = 0.0
    status: str = "starting"  # starting|stable|failed
    config: NodeConfig = field(default_factory=NodeConfig)

    def is_stable(self) -> bool:
        return self.status == "stable"

    @property
    def subnet(self) -> str:
        return subnet_of(self.config.ip)


@dataclass
class Link:
    link_id: str
    a: str
    b: str
    interface: str = ""
    protocol: str = "HTTP/2"

    def touches(self, uid: str) -> bool:
        return self.a == uid or self.b == uid

    def other(self, uid: str) -> Optional[str]:
        if self.a == uid:
            return self.b
        if self.b == uid:
            return self.a
        return None


@dataclass
class Bus:
    bus_id: str
    name: str = "Service Bus"
    orientation: str = "horizontal"  # horizontal|vertical
    x: float = 0.0
    y: float = 0.0
    length: float = 600.0
    thickness: float = 8.0


@dataclass
class BusAttachment:
    attach_id: str
    uid: str
    bus_id: str
    interface: str = ""
    protocol: str = "HTTP/2"


StoreListener = Callable[[str, Dict[str, Any]], None]


class TopologyStore:
    """Nodes, point-to-point links, shared buses and bus attachments.

    Every mutation is a single synchronous step and is announced to
    subscribers afterwards, so interleaved session flows never observe a
    half-applied change.
    """

    def __init__(self, log=None):
        self.nodes: Dict[str, Node] = {}
        self.links: Dict[str, Link] = {}
        self.buses: Dict[str, Bus] = {}
        self.attachments: Dict[str, BusAttachment] = {}
        self.log = log

        self._next_link = 1
        self._next_bus = 1
        self._next_attach = 1
        self._listeners: List[StoreListener] = []

    # ───────────────────────────── Subscriptions ─────────────────────────────

    def subscribe(self, callback: StoreListener) -> None:
        self._listeners.append(callback)

    def unsubscribe(self, callback: StoreListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, event: str, **data: Any) -> None:
        for cb in list(self._listeners):
            try:
                cb(event, data)
            except Exception as e:
                if self.log is not None:
                    self.log.add("system", "ERROR", f"Topology listener failed on {event}: {e}")

    # ───────────────────────────── Nodes ─────────────────────────────

    def get(self, uid: str) -> Optional[Node]:
        return self.nodes.get(_norm_uid(uid))

    def require(self, uid: str) -> Node:
        node = self.get(uid)
        if node is None:
            raise TopologyError(f"Unknown node: {uid}")
        return node

    def nodes_of_kind(self, kind: str) -> List[Node]:
        return [n for n in self.nodes.values() if n.kind == kind]

    def add_node(
        self,
        uid: str,
        kind: str,
        name: Optional[str] = None,
        x: float = 0.0,
        y: float = 0.0,
        status: str = "starting",
        ip: Optional[str] = None,
        port: Optional[int] = None,
        **config: Any,
    ) -> Node:
        uid = _norm_uid(uid)
        if not uid:
            raise TopologyError("Node id must not be empty")
        if uid in self.nodes:
            raise TopologyError(f"Duplicate node id: {uid}")
        if kind not in NODE_KINDS:
            raise TopologyError(f"Unknown node type: {kind}")
        if status not in STATUSES:
            raise TopologyError(f"Unknown status: {status}")

        if ip is None:
            ip = self.next_free_address()
        if port is None:
            port = self.next_free_port()
        self._check_address(ip, port, exclude=None)

        cfg = NodeConfig(ip=ip, port=int(port))
        for k, v in config.items():
            if not hasattr(cfg, k):
                raise TopologyError(f"Unknown config field: {k}")
            setattr(cfg, k, v)

        if kind == "UE" and cfg.subscriber_imsi:
            self._check_subscriber(uid, cfg.subscriber_imsi, cfg.subscriber_key, cfg.subscriber_opc,
                                   cfg.subscriber_dnn, cfg.subscriber_sst)

        node = Node(uid=uid, kind=kind, name=name or self._next_name(kind), x=float(x), y=float(y),
                    status=status, config=cfg)
        self.nodes[uid] = node
        self._notify("node_added", uid=uid)
        return node

    def remove_node(self, uid: str) -> None:
        uid = _norm_uid(uid)
        if uid not in self.nodes:
            return
        doomed_links = [lid for lid, l in self.links.items() if l.touches(uid)]
        for lid in doomed_links:
            self.remove_link(lid)
        doomed_att = [aid for aid, a in self.attachments.items() if a.uid == uid]
        for aid in doomed_att:
            att = self.attachments.pop(aid)
            self._notify("bus_detached", uid=uid, bus_id=att.bus_id)
        self.nodes.pop(uid, None)
        self._notify("node_removed", uid=uid)

    def set_status(self, uid: str, status: str) -> None:
        if status not in STATUSES:
            raise TopologyError(f"Unknown status: {status}")
        node = self.require(uid)
        node.status = status
        self._notify("node_updated", uid=node.uid, fields=["status"])

    def move_node(self, uid: str, x: float, y: float) -> None:
        node = self.require(uid)
        node.x, node.y = float(x), float(y)
        self._notify("node_updated", uid=node.uid, fields=["position"])

    def update_config(self, uid: str, **fields: Any) -> Node:
        """Apply config edits atomically; address/port stay unique."""
        node = self.require(uid)
        cfg = node.config
        for k in fields:
            if not hasattr(cfg, k):
                raise TopologyError(f"Unknown config field: {k}")

        ip = fields.get("ip", cfg.ip)
        port = fields.get("port", cfg.port)
        if "ip" in fields or "port" in fields:
            self._check_address(ip, port, exclude=node.uid)

        for k, v in fields.items():
            setattr(cfg, k, v)
        self._notify("node_updated", uid=node.uid, fields=sorted(fields))
        return node

    def set_subscriber(self, uid: str, imsi: str, key: str, opc: str, dnn: str = "5G-Lab", sst: int = 1) -> Node:
        node = self.require(uid)
        if node.kind != "UE":
            raise TopologyError(f"{node.name} is not a UE")
        self._check_subscriber(node.uid, imsi, key, opc, dnn, sst)
        return self.update_config(
            node.uid,
            subscriber_imsi=str(imsi),
            subscriber_key=str(key),
            subscriber_opc=str(opc),
            subscriber_dnn=str(dnn),
            subscriber_sst=int(sst),
        )

    def _check_subscriber(self, uid: str, imsi, key, opc, dnn, sst) -> None:
        problems = subscriber_problems(imsi, key, opc, dnn, sst)
        if problems:
            raise TopologyError(problems[0])
        for other in self.nodes_of_kind("UE"):
            if other.uid != uid and other.config.subscriber_imsi == str(imsi):
                raise TopologyError(f"IMSI {imsi} is already assigned to {other.name}")

    def _check_address(self, ip: Optional[str], port: Optional[int], exclude: Optional[str]) -> None:
        try:
            ipaddress.IPv4Address(ip)
        except (ipaddress.AddressValueError, ValueError, TypeError):
            raise TopologyError(f"Invalid IP address: {ip}")
        if port is None or not (0 < int(port) < 65536):
            raise TopologyError(f"Invalid port: {port}")
        for n in self.nodes.values():
            if n.uid == exclude:
                continue
            if n.config.ip == ip:
                raise TopologyError(f"IP address {ip} is already in use by {n.name}")
            if n.config.port == int(port):
                raise TopologyError(f"Port {port} is already in use by {n.name}")

    def _next_name(self, kind: str) -> str:
        taken = {n.name for n in self.nodes.values()}
        n = len(self.nodes_of_kind(kind)) + 1
        while f"{kind}-{n}" in taken:
            n += 1
        return f"{kind}-{n}"

    def next_free_address(self) -> str:
        used = {n.config.ip for n in self.nodes.values()}
        for subnet in AUTO_SUBNETS:
            for host in range(10, 255):
                ip = f"{subnet}.{host}"
                if ip not in used:
                    return ip
        raise TopologyError("No free address left in the auto-assignment subnets")

    def next_free_port(self) -> int:
        used = {n.config.port for n in self.nodes.values()}
        for port in AUTO_PORTS:
            if port not in used:
                return port
        raise TopologyError("No free port left in the auto-assignment range")

    # ───────────────────────────── Links ─────────────────────────────

    def connect(self, a: str, b: str, interface: str = "", protocol: str = "HTTP/2") -> str:
        a = _norm_uid(a)
        b = _norm_uid(b)
        if a not in self.nodes or b not in self.nodes:
            raise TopologyError("Unknown device")
        if a == b:
            raise TopologyError("Cannot link a node to itself")

        link_id = f"L{self._next_link}"
        self._next_link += 1
        self.links[link_id] = Link(link_id=link_id, a=a, b=b, interface=interface, protocol=protocol)
        self._notify("link_added", link_id=link_id, a=a, b=b)
        return link_id

    def remove_link(self, link_id: str) -> None:
        link = self.links.pop(link_id, None)
        if link is not None:
            self._notify("link_removed", link_id=link_id, a=link.a, b=link.b)

    def links_for(self, uid: str) -> List[Link]:
        uid = _norm_uid(uid)
        return [l for l in self.links.values() if l.touches(uid)]

    def link_between(self, a: str, b: str) -> Optional[Link]:
        a = _norm_uid(a)
        b = _norm_uid(b)
        for l in self.links.values():
            if (l.a == a and l.b == b) or (l.a == b and l.b == a):
                return l
        return None

    def neighbors(self, uid: str) -> List[str]:
        uid = _norm_uid(uid)
        out: List[str] = []
        for l in self.links.values():
            other = l.other(uid)
            if other is not None and other not in out:
                out.append(other)
        return out

    # ───────────────────────────── Buses ─────────────────────────────

    def add_bus(
        self,
        name: str = "Service Bus",
        orientation: str = "horizontal",
        x: float = 0.0,
        y: float = 0.0,
        length: float = 600.0,
        thickness: float = 8.0,
        bus_id: Optional[str] = None,
    ) -> Bus:
        if orientation not in ORIENTATIONS:
            raise TopologyError(f"Unknown bus orientation: {orientation}")
        if bus_id is None:
            while f"BUS{self._next_bus}" in self.buses:
                self._next_bus += 1
            bus_id = f"BUS{self._next_bus}"
            self._next_bus += 1
        bus_id = _norm_uid(bus_id)
        if bus_id in self.buses:
            raise TopologyError(f"Duplicate bus id: {bus_id}")
        bus = Bus(bus_id=bus_id, name=name, orientation=orientation, x=float(x), y=float(y),
                  length=float(length), thickness=float(thickness))
        self.buses[bus_id] = bus
        self._notify("bus_added", bus_id=bus_id)
        return bus

    def remove_bus(self, bus_id: str) -> None:
        if bus_id not in self.buses:
            return
        for aid in [aid for aid, a in self.attachments.items() if a.bus_id == bus_id]:
            att = self.attachments.pop(aid)
            self._notify("bus_detached", uid=att.uid, bus_id=bus_id)
        self.buses.pop(bus_id, None)
        self._notify("bus_removed", bus_id=bus_id)

    def bus(self, bus_id: str) -> Optional[Bus]:
        return self.buses.get(bus_id)

    def attach(self, uid: str, bus_id: str, interface: Optional[str] = None, protocol: str = "HTTP/2") -> str:
        uid = _norm_uid(uid)
        node = self.require(uid)
        if bus_id not in self.buses:
            raise TopologyError(f"Unknown bus: {bus_id}")
        for aid, a in self.attachments.items():
            if a.uid == uid and a.bus_id == bus_id:
                return aid

        attach_id = f"BC{self._next_attach}"
        self._next_attach += 1
        if interface is None:
            interface = f"N{node.kind.lower()}"
        self.attachments[attach_id] = BusAttachment(attach_id=attach_id, uid=uid, bus_id=bus_id,
                                                    interface=interface, protocol=protocol)
        self._notify("bus_attached", uid=uid, bus_id=bus_id)
        return attach_id

    def detach(self, uid: str, bus_id: str) -> None:
        uid = _norm_uid(uid)
        doomed = [aid for aid, a in self.attachments.items() if a.uid == uid and a.bus_id == bus_id]
        for aid in doomed:
            self.attachments.pop(aid, None)
        if doomed:
            self._notify("bus_detached", uid=uid, bus_id=bus_id)

    def attachments_for(self, uid: str) -> List[BusAttachment]:
        uid = _norm_uid(uid)
        return [a for a in self.attachments.values() if a.uid == uid]

    def bus_ids_for(self, uid: str) -> Set[str]:
        return {a.bus_id for a in self.attachments_for(uid)}

    def nodes_on_bus(self, bus_id: str) -> List[str]:
        return [a.uid for a in self.attachments.values() if a.bus_id == bus_id]

    def common_bus(self, a: str, b: str) -> Optional[Bus]:
        """First bus (in attachment order) both nodes are attached to."""
        b_buses = self.bus_ids_for(b)
        for att in self.attachments_for(a):
            if att.bus_id in b_buses:
                return self.buses.get(att.bus_id)
        return None

    # ───────────────────────────── Whole store ─────────────────────────────

    def clear(self) -> None:
        self.nodes.clear()
        self.links.clear()
        self.buses.clear()
        self.attachments.clear()
        self._next_link = 1
        self._next_bus = 1
        self._next_attach = 1
        self._notify("cleared")
