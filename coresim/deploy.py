"""Bulk deploy: a whole-topology snapshot replayed into the store in order.

The snapshot schema is strict (extra="forbid" everywhere) so a typo in a
hand-written lab file fails validation instead of being silently ignored.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .topology import Node, TopologyError, TopologyStore


NodeKind = Literal["NRF", "AMF", "SMF", "UPF", "gNB", "UE", "AUSF", "UDM", "PCF", "NSSF", "UDR", "MySQL", "ext-dn"]

SUPPORTED_SCHEMA_VERSIONS = {1}


class SnapshotMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field("5G Core Lab", description="Human name for this lab")


class SubscriberSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    imsi: str = Field(..., description="15-digit IMSI")
    key: str = Field(..., description="32 hex chars")
    opc: str = Field(..., description="32 hex chars")
    dnn: str = Field("5G-Lab", description="Data network name")
    sst: int = Field(1, description="Slice/service type")


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Unique node id")
    type: NodeKind = Field(..., description="NF type tag")
    name: Optional[str] = Field(default=None, description="Display name; auto-named when omitted")
    x: float = Field(..., description="Canvas X coordinate")
    y: float = Field(..., description="Canvas Y coordinate")
    status: Literal["starting", "stable", "failed"] = "stable"
    ip: Optional[str] = Field(default=None, description="IPv4 address; auto-assigned when omitted")
    port: Optional[int] = Field(default=None, description="Service port; auto-assigned when omitted")
    subscriber: Optional[SubscriberSpec] = None
    tun0: bool = Field(False, description="UPF only: create the tun0 address pool on deploy")


class BusSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = "Service Bus"
    orientation: Literal["horizontal", "vertical"] = "horizontal"
    x: float = 0.0
    y: float = 0.0
    length: float = 600.0
    thickness: float = 8.0


class LinkSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., description="Endpoint node id")
    target: str = Field(..., description="Endpoint node id")
    interface: str = Field("", description="Reference point label (N1, N2, ...)")
    protocol: str = "HTTP/2"


class BusAttachmentSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    node: str
    bus: str
    interface: Optional[str] = None


class TopologySnapshot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schemaVersion: int = Field(1, description="Schema version")
    meta: SnapshotMeta = Field(default_factory=SnapshotMeta)
    nodes: List[NodeSpec] = Field(default_factory=list)
    buses: List[BusSpec] = Field(default_factory=list)
    links: List[LinkSpec] = Field(default_factory=list)
    busConnections: List[BusAttachmentSpec] = Field(default_factory=list)


SnapshotLike = Union[TopologySnapshot, Dict[str, Any]]


def _format_error(err: Dict[str, Any]) -> str:
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg", "invalid"))


def _parse(data: SnapshotLike) -> Tuple[Optional[TopologySnapshot], List[str]]:
    if isinstance(data, TopologySnapshot):
        return data, []
    if not isinstance(data, dict):
        return None, ["Top-level must be an object."]
    try:
        return TopologySnapshot.model_validate(data), []
    except ValidationError as e:
        return None, [_format_error(err) for err in e.errors()]


def _referential_problems(snap: TopologySnapshot) -> List[str]:
    problems: List[str] = []

    if snap.schemaVersion not in SUPPORTED_SCHEMA_VERSIONS:
        problems.append(f"schemaVersion must be one of {sorted(SUPPORTED_SCHEMA_VERSIONS)}.")

    ids = set()
    ips: Dict[str, str] = {}
    ports: Dict[int, str] = {}
    imsis: Dict[str, str] = {}
    for i, n in enumerate(snap.nodes):
        if n.id in ids:
            problems.append(f"Duplicate node id: {n.id}")
        ids.add(n.id)
        if n.ip is not None:
            if n.ip in ips:
                problems.append(f"nodes[{i}].ip {n.ip} already used by {ips[n.ip]}.")
            ips.setdefault(n.ip, n.id)
        if n.port is not None:
            if n.port in ports:
                problems.append(f"nodes[{i}].port {n.port} already used by {ports[n.port]}.")
            ports.setdefault(n.port, n.id)
        if n.subscriber is not None:
            if n.type != "UE":
                problems.append(f"nodes[{i}].subscriber is only valid on a UE.")
            elif n.subscriber.imsi in imsis:
                problems.append(f"nodes[{i}] IMSI {n.subscriber.imsi} already used by {imsis[n.subscriber.imsi]}.")
            else:
                imsis[n.subscriber.imsi] = n.id
        if n.tun0 and n.type != "UPF":
            problems.append(f"nodes[{i}].tun0 is only valid on a UPF.")

    bus_ids = set()
    for b in snap.buses:
        if b.id in bus_ids:
            problems.append(f"Duplicate bus id: {b.id}")
        bus_ids.add(b.id)

    for i, l in enumerate(snap.links):
        if l.source not in ids:
            problems.append(f"links[{i}].source references missing node '{l.source}'.")
        if l.target not in ids:
            problems.append(f"links[{i}].target references missing node '{l.target}'.")
        if l.source == l.target:
            problems.append(f"links[{i}] links {l.source} to itself.")

    for i, c in enumerate(snap.busConnections):
        if c.node not in ids:
            problems.append(f"busConnections[{i}].node references missing node '{c.node}'.")
        if c.bus not in bus_ids:
            problems.append(f"busConnections[{i}].bus references missing bus '{c.bus}'.")

    return problems


def _ingest(store: TopologyStore, snap: TopologySnapshot,
            on_node: Optional[Callable[[NodeSpec, Node], None]] = None) -> List[str]:
    """Replay ``snap`` into an empty ``store``; returns node ids in deploy order.

    Buses go in first. Each node is then added together with its bus
    attachments and the links it originates whose far end already exists.
    Links pointing forward are added once every node is in place.
    """
    for b in snap.buses:
        store.add_bus(name=b.name, orientation=b.orientation, x=b.x, y=b.y, length=b.length,
                      thickness=b.thickness, bus_id=b.id)

    deployed: List[str] = []
    deferred: List[LinkSpec] = []
    for n in snap.nodes:
        extra: Dict[str, Any] = {}
        if n.subscriber is not None:
            extra = {
                "subscriber_imsi": n.subscriber.imsi,
                "subscriber_key": n.subscriber.key,
                "subscriber_opc": n.subscriber.opc,
                "subscriber_dnn": n.subscriber.dnn,
                "subscriber_sst": n.subscriber.sst,
            }
        node = store.add_node(n.id, n.type, name=n.name, x=n.x, y=n.y, status=n.status,
                              ip=n.ip, port=n.port, **extra)
        deployed.append(node.uid)

        for c in snap.busConnections:
            if c.node == n.id:
                store.attach(n.id, c.bus, interface=c.interface)

        for l in snap.links:
            if l.source != n.id:
                continue
            if store.get(l.target) is None:
                deferred.append(l)
                continue
            store.connect(l.source, l.target, interface=l.interface, protocol=l.protocol)

        if on_node is not None:
            on_node(n, node)

    for l in deferred:
        store.connect(l.source, l.target, interface=l.interface, protocol=l.protocol)
    return deployed


def _load_problems(snap: TopologySnapshot) -> List[str]:
    # Dry run into a scratch store: auto-assigned addresses, credential
    # checks and address syntax are only known once the store applies them.
    try:
        _ingest(TopologyStore(), snap)
    except TopologyError as e:
        return [str(e)]
    return []


def _problems(data: SnapshotLike) -> Tuple[Optional[TopologySnapshot], List[str]]:
    snap, problems = _parse(data)
    if snap is None:
        return None, problems
    problems = _referential_problems(snap)
    if not problems:
        problems = _load_problems(snap)
    return snap, problems


def validate_snapshot(data: SnapshotLike) -> List[str]:
    """Return human-readable problems; empty when the snapshot can be deployed."""
    return _problems(data)[1]


def deploy(sim, data: SnapshotLike) -> List[str]:
    """Replace the current topology with ``data``; returns node ids in deploy order.

    The snapshot is fully checked (including a dry-run load) before the live
    topology is touched, so a rejected snapshot leaves it as it was.
    """
    snap, problems = _problems(data)
    if problems:
        raise TopologyError("Invalid topology snapshot: " + "; ".join(problems))

    store = sim.store
    log = sim.log

    sim.reset()
    log.add("system", "INFO", f"Deploying '{snap.meta.name}'", {
        "nodes": len(snap.nodes),
        "buses": len(snap.buses),
        "links": len(snap.links),
    })

    def _node_done(spec: NodeSpec, node: Node) -> None:
        if spec.tun0:
            sim.allocator.init_pool(node.uid)
        log.add("system", "INFO", f"Deployed {node.name} ({node.config.ip}:{node.config.port})")

    deployed = _ingest(store, snap, on_node=_node_done)

    log.add("system", "SUCCESS", f"'{snap.meta.name}' deployed", {
        "nodes": len(store.nodes),
        "links": len(store.links),
        "busConnections": len(store.attachments),
    })
    return deployed


# ───────────────────────────── Built-in lab ─────────────────────────────

# id/type, x, y, last octet, port
_CORE_LAB_NODES = [
    ("NRF", 119, 38, 10, 8080),
    ("AMF", 274, 222, 11, 8081),
    ("SMF", 395, 228, 12, 8082),
    ("UPF", 400, 341, 13, 8083),
    ("AUSF", 510, 225, 14, 8084),
    ("ext-dn", 539, 342, 15, 80),
    ("UDM", 461, 36, 16, 8085),
    ("PCF", 234, 35, 17, 8086),
    ("NSSF", 336, 38, 18, 8087),
    ("UDR", 577, 35, 19, 8088),
    ("MySQL", 726, 36, 20, 3306),
    ("gNB", 182, 342, 21, 8089),
    ("UE", 33, 342, 22, 8090),
]

_CORE_LAB_BUS_MEMBERS = ("NRF", "AMF", "SMF", "AUSF", "UDM", "PCF", "NSSF", "UDR")

# source, target, interface, protocol
_CORE_LAB_LINKS = [
    ("UPF", "SMF", "N4", "PFCP"),
    ("ext-dn", "UPF", "N6", "IP"),
    ("UDM", "NRF", "Nnrf_NFManagement", "HTTP/2"),
    ("MySQL", "UDR", "SQL/REST API", "SQL"),
    ("gNB", "AMF", "N2", "NGAP"),
    ("gNB", "UPF", "N3", "GTP-U"),
    ("UE", "gNB", "Radio", "RRC"),
    ("UE", "AMF", "N1", "NAS"),
]

CORE_LAB_SUBSCRIBER = {
    "imsi": "001010000000101",
    "key": "fec86ba6eb707ed08905757b1bb44b8f",
    "opc": "C42449363BBAD02B66D16BC975D77CC1",
    "dnn": "5G-Lab",
    "sst": 1,
}


def core_lab_snapshot() -> TopologySnapshot:
    """The one-click 5G core: every NF on 192.168.1.0/24, SBA bus, N1-N6 links."""
    nodes = []
    for kind, x, y, octet, port in _CORE_LAB_NODES:
        nodes.append(NodeSpec(
            id=kind,
            type=kind,
            name=f"{kind}-1",
            x=x,
            y=y,
            ip=f"192.168.1.{octet}",
            port=port,
            subscriber=SubscriberSpec(**CORE_LAB_SUBSCRIBER) if kind == "UE" else None,
            tun0=(kind == "UPF"),
        ))

    return TopologySnapshot(
        schemaVersion=1,
        meta=SnapshotMeta(name="5G Core Lab"),
        nodes=nodes,
        buses=[BusSpec(id="BUS1", name="Service Bus", orientation="horizontal", x=110, y=152, length=600)],
        links=[LinkSpec(source=s, target=t, interface=i, protocol=p) for s, t, i, p in _CORE_LAB_LINKS],
        busConnections=[BusAttachmentSpec(node=uid, bus="BUS1") for uid in _CORE_LAB_BUS_MEMBERS],
    )
