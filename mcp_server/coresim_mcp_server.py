\
"""
Optional: MCP server over the 5G core session simulator.

Exposes snapshot validation, the built-in core lab, and a one-shot PDU session
run so an MCP client can drive the engine without the editor.

Run (example):
  pip install "coresim[mcp]"
  python mcp_server/coresim_mcp_server.py

Then connect an MCP client to:
  http://localhost:8000/mcp
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from coresim import CoreSim, EngineConfig, TopologyError, core_lab_snapshot, validate_snapshot

mcp = FastMCP(
    "CoreSim MCP Server",
    instructions="Tools for validating 5G core lab snapshots and running simulated PDU sessions.",
    stateless_http=True,
    json_response=True,
)


@mcp.tool()
def validate_topology_json(topology_json: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a core lab snapshot; returns problems list."""
    problems = validate_snapshot(topology_json)
    return {"ok": len(problems) == 0, "problems": problems}


@mcp.tool()
def generate_core_lab() -> Dict[str, Any]:
    """Generate the one-click 5G core lab (NRF..UE on 192.168.1.0/24, SBA bus, N1-N6)."""
    return core_lab_snapshot().model_dump()


@mcp.tool()
async def run_pdu_session(
    ue_id: str = "UE",
    topology_json: Optional[Dict[str, Any]] = None,
    release: bool = False,
    delay_scale: float = 0.0,
) -> Dict[str, Any]:
    """Deploy a snapshot (built-in lab by default) and run one PDU session for ``ue_id``.

    Settling delays are skipped unless ``delay_scale`` is raised.
    """
    sim = CoreSim(EngineConfig.from_env(delay_scale=delay_scale, token_speed=1000.0))
    try:
        sim.deploy(topology_json if topology_json is not None else core_lab_snapshot())
    except TopologyError as e:
        return {"ok": False, "error": str(e)}

    result = await sim.run_pdu_session(ue_id, release=release)
    result["ok"] = bool(result["established"])
    return result


if __name__ == "__main__":
    # Streamable HTTP transport is recommended in the MCP SDK docs.
    mcp.run(transport="streamable-http")
