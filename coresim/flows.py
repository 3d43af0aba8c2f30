"""PDU session message flows.

Each flow is an ordered table of steps. A step names the sending and receiving
NF role, the interface the message travels on, how long the receiver takes to
process it (settling delay), and how to build the message body. Payloads are
opaque to the engine; they only ride along on tokens and log records.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .topology import Node


DEFAULT_DNN = "5G-Lab"


@dataclass
class FlowContext:
    ue: Node
    amf: Node
    smf: Node
    upf: Node
    session: Any

    def node(self, role: str) -> Node:
        return getattr(self, role)

    @property
    def supi(self) -> str:
        return f"imsi-{self.ue.config.subscriber_imsi}"

    @property
    def dnn(self) -> str:
        return self.ue.config.subscriber_dnn or DEFAULT_DNN

    @property
    def snssai(self) -> Dict[str, Any]:
        return {"sst": self.ue.config.subscriber_sst or 1}


PayloadBuilder = Callable[[FlowContext], Dict[str, Any]]


@dataclass(frozen=True)
class Step:
    source: str  # ue|amf|smf|upf
    target: str
    interface: str
    direction: str  # request|response
    description: str
    settle_sec: float
    build: PayloadBuilder
    level: str = "INFO"
    method: Optional[str] = None
    protocol: Optional[str] = None
    # UPF hands out the UE address and tunnel before answering.
    allocates: bool = False


# ───────────────────────────── Establishment ─────────────────────────────


def _n1_establishment_request(c: FlowContext) -> Dict[str, Any]:
    return {
        "messageType": "PDU_SESSION_ESTABLISHMENT_REQUEST",
        "supi": c.supi,
        "pduSessionId": c.session.session_id,
        "requestType": "INITIAL_REQUEST",
        "snssai": c.snssai,
        "dnn": c.dnn,
    }


def _nsmf_create(c: FlowContext) -> Dict[str, Any]:
    return {
        "supi": c.supi,
        "pduSessionId": c.session.session_id,
        "dnn": c.dnn,
        "snssai": c.snssai,
        "requestType": "INITIAL_REQUEST",
        "servingNfId": c.amf.uid,
        "anType": "3GPP_ACCESS",
    }


def _n4_establishment_request(c: FlowContext) -> Dict[str, Any]:
    return {
        "pduSessionId": c.session.session_id,
        "ueIpAllocation": True,
        "qos": {
            "5qi": 9,
            "arp": {"priorityLevel": 1, "preemptCap": "NOT_PREEMPT", "preemptVuln": "NOT_PREEMPTABLE"},
        },
        "createFar": {"forwardingParameters": {"destinationInterface": "ACCESS"}},
        "createPdr": {"pdi": {"sourceInterface": "CORE"}},
    }


def _n4_establishment_response(c: FlowContext) -> Dict[str, Any]:
    return {
        "status": "SUCCESS",
        "cause": "REQUEST_ACCEPTED",
        "ueIp": c.session.assigned_ip,
        "tunnelId": c.session.tunnel_id,
        "f_teid": {"teid": c.session.teid, "ipv4Address": c.upf.config.ip},
    }


def _session_accept(c: FlowContext) -> Dict[str, Any]:
    return {
        "pduSessionId": c.session.session_id,
        "pduSessionType": "IPV4",
        "sscMode": "SSC_MODE_1",
        "sessionAmbr": {"uplink": "100 Mbps", "downlink": "100 Mbps"},
        "allocatedIpAddress": c.session.assigned_ip,
        "qosFlowsSetupList": [{"qfi": 1, "5qi": 9, "arp": {"priorityLevel": 1}}],
    }


def _n1_establishment_accept(c: FlowContext) -> Dict[str, Any]:
    return {
        "messageType": "PDU_SESSION_ESTABLISHMENT_ACCEPT",
        "pduSessionId": c.session.session_id,
        "pduSessionType": "IPV4",
        "sscMode": "SSC_MODE_1",
        "pduAddress": c.session.assigned_ip,
        "dnn": c.dnn,
        "qosRules": [{"qri": 1, "qfi": 1, "dqrBit": True}],
    }


ESTABLISHMENT_FLOW: List[Step] = [
    Step("ue", "amf", "N1", "request", "N1: PDU Session Establishment Request → AMF", 0.8,
         _n1_establishment_request),
    Step("amf", "smf", "Nsmf_PDUSession", "request", "Nsmf_PDUSession_Create (HTTP/2 POST) → SMF", 0.4,
         _nsmf_create, method="POST"),
    Step("smf", "upf", "N4", "request", "N4 Session Establishment Request → UPF", 1.2,
         _n4_establishment_request, protocol="PFCP"),
    Step("upf", "smf", "N4", "response", "N4 Session Establishment Response → SMF", 0.8,
         _n4_establishment_response, level="SUCCESS", allocates=True),
    Step("smf", "amf", "Nsmf_PDUSession", "response", "PDU Session Accept → AMF", 0.8,
         _session_accept),
    Step("amf", "ue", "N1", "response", "N1: PDU Session Establishment Accept → UE", 0.8,
         _n1_establishment_accept),
]


# ───────────────────────────── Release ─────────────────────────────


def _n1_release_request(c: FlowContext) -> Dict[str, Any]:
    return {
        "messageType": "PDU_SESSION_RELEASE_REQUEST",
        "pduSessionId": c.session.session_id,
        "cause": "REGULAR_DEACTIVATION",
    }


def _nsmf_release(c: FlowContext) -> Dict[str, Any]:
    return {"supi": c.supi, "pduSessionId": c.session.session_id, "cause": "REL_DUE_TO_UE_INITIATED"}


def _n4_release_request(c: FlowContext) -> Dict[str, Any]:
    return {
        "pduSessionId": c.session.session_id,
        "cause": "SESSION_CONTEXT_DELETED",
        "releaseTunnelId": c.session.tunnel_id,
    }


def _n4_release_response(c: FlowContext) -> Dict[str, Any]:
    return {
        "status": "SUCCESS",
        "cause": "REQUEST_ACCEPTED",
        "freedIp": c.session.assigned_ip,
        "freedTunnelId": c.session.tunnel_id,
    }


def _release_confirmation(c: FlowContext) -> Dict[str, Any]:
    return {"pduSessionId": c.session.session_id, "status": "RELEASED"}


def _n1_release_complete(c: FlowContext) -> Dict[str, Any]:
    return {"messageType": "PDU_SESSION_RELEASE_COMPLETE", "pduSessionId": c.session.session_id}


RELEASE_FLOW: List[Step] = [
    Step("ue", "amf", "N1", "request", "N1: PDU Session Release Request → AMF", 0.8, _n1_release_request),
    Step("amf", "smf", "Nsmf_PDUSession", "request", "Nsmf_PDUSession_Release (HTTP/2 POST) → SMF", 0.4,
         _nsmf_release, method="POST"),
    Step("smf", "upf", "N4", "request", "N4 Session Release Request → UPF", 0.4,
         _n4_release_request, protocol="PFCP"),
    Step("upf", "smf", "N4", "response", "N4 Session Release Response → SMF", 0.8,
         _n4_release_response, level="SUCCESS"),
    Step("smf", "amf", "Nsmf_PDUSession", "response", "PDU Session Release Confirmation → AMF", 0.8,
         _release_confirmation),
    Step("amf", "ue", "N1", "response", "N1: PDU Session Release Complete → UE", 0.8, _n1_release_complete),
]
