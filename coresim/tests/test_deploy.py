import asyncio
import itertools
import unittest

from coresim.config import EngineConfig
from coresim.core import CoreSim
from coresim.deploy import core_lab_snapshot, validate_snapshot
from coresim.topology import TopologyError


def run_async(coro):
    return asyncio.run(coro)


def fast_sim():
    return CoreSim(EngineConfig(delay_scale=0.0, token_speed=1000.0, tick_interval_sec=0.001, seed=7))


def tiny_snapshot(**overrides):
    snap = {
        "schemaVersion": 1,
        "meta": {"name": "tiny"},
        "nodes": [
            {"id": "AMF", "type": "AMF", "x": 10, "y": 10},
            {"id": "SMF", "type": "SMF", "x": 50, "y": 10},
        ],
        "buses": [],
        "links": [{"source": "AMF", "target": "SMF", "interface": "N11"}],
        "busConnections": [],
    }
    snap.update(overrides)
    return snap


class TestValidateSnapshot(unittest.TestCase):
    def test_core_lab_is_valid(self):
        self.assertEqual(validate_snapshot(core_lab_snapshot()), [])
        self.assertEqual(validate_snapshot(core_lab_snapshot().model_dump()), [])

    def test_schema_errors(self):
        self.assertEqual(validate_snapshot([]), ["Top-level must be an object."])

        bad = tiny_snapshot()
        bad["nodes"][0]["colour"] = "red"
        problems = validate_snapshot(bad)
        self.assertEqual(len(problems), 1)
        self.assertIn("nodes.0.colour", problems[0])

        bad = tiny_snapshot()
        bad["nodes"][1]["type"] = "router"
        self.assertTrue(any(p.startswith("nodes.1.type") for p in validate_snapshot(bad)))

    def test_referential_errors(self):
        snap = tiny_snapshot(
            links=[{"source": "AMF", "target": "UPF"}],
            busConnections=[{"node": "NRF", "bus": "BUS9"}],
        )
        snap["nodes"].append({"id": "AMF", "type": "AMF", "x": 0, "y": 0})
        problems = validate_snapshot(snap)

        self.assertIn("Duplicate node id: AMF", problems)
        self.assertIn("links[0].target references missing node 'UPF'.", problems)
        self.assertIn("busConnections[0].node references missing node 'NRF'.", problems)
        self.assertIn("busConnections[0].bus references missing bus 'BUS9'.", problems)

    def test_clashing_addresses_and_misplaced_fields(self):
        snap = tiny_snapshot()
        snap["nodes"][0].update(ip="192.168.1.11", tun0=True)
        snap["nodes"][1].update(ip="192.168.1.11")
        problems = validate_snapshot(snap)
        self.assertTrue(any("already used by AMF" in p for p in problems))
        self.assertIn("nodes[0].tun0 is only valid on a UPF.", problems)

    def test_auto_assigned_address_collision_is_reported(self):
        snap = {"nodes": [
            {"id": "A", "type": "AMF", "x": 0, "y": 0},
            {"id": "B", "type": "SMF", "x": 40, "y": 0, "ip": "192.168.1.10"},
        ]}
        problems = validate_snapshot(snap)
        self.assertEqual(len(problems), 1)
        self.assertIn("192.168.1.10 is already in use by AMF-1", problems[0])

    def test_store_level_rejections_are_reported(self):
        snap = tiny_snapshot()
        snap["nodes"][0]["ip"] = "not-an-ip"
        self.assertEqual(validate_snapshot(snap), ["Invalid IP address: not-an-ip"])


class TestDeploy(unittest.TestCase):
    def test_core_lab_deploys_in_order(self):
        sim = fast_sim()
        order = sim.deploy(core_lab_snapshot())

        self.assertEqual(order[:4], ["NRF", "AMF", "SMF", "UPF"])
        self.assertEqual(order[-2:], ["gNB", "UE"])
        self.assertEqual(len(sim.store.nodes), 13)
        self.assertEqual(len(sim.store.links), 8)
        self.assertEqual(len(sim.store.attachments), 8)
        self.assertEqual(sim.store.get("AMF").config.ip, "192.168.1.11")
        self.assertEqual(sim.store.get("MySQL").config.port, 3306)
        self.assertIsNotNone(sim.store.get("UPF").config.tun0)
        self.assertEqual(sim.store.get("UE").config.subscriber_imsi, "001010000000101")

        created = [r for r in sim.log.records(node_id="UPF") if r.message == "tun0 interface created"]
        self.assertEqual(len(created), 1)
        self.assertEqual(sim.log.records(node_id="system")[-1].level, "SUCCESS")

    def test_core_lab_runs_a_session(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())

        self.assertTrue(sim.sessions.validate_prerequisites("UE").valid)
        self.assertTrue(run_async(sim.establish("UE")))
        tun = sim.store.get("UE").config.tun_interface
        self.assertEqual(tun.name, "tun_ue1")
        self.assertEqual(tun.ip, "10.0.0.2")
        self.assertEqual(tun.gateway, "10.0.0.1")

    def test_core_lab_bus_routes_and_symmetry(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())

        self.assertEqual(len(sim.planner.compute_path("UE", "AMF")), 2)
        self.assertEqual(len(sim.planner.compute_path("AMF", "SMF")), 5)
        for a, b in itertools.combinations(sim.store.nodes, 2):
            self.assertEqual(sim.reachability.are_connected(a, b), sim.reachability.are_connected(b, a))

    def test_forward_links_are_deferred(self):
        sim = fast_sim()
        snap = tiny_snapshot(links=[{"source": "AMF", "target": "SMF", "interface": "N11"}])
        sim.deploy(snap)
        link = sim.store.link_between("AMF", "SMF")
        self.assertIsNotNone(link)
        self.assertEqual(link.interface, "N11")

    def test_invalid_snapshot_leaves_store_alone(self):
        sim = fast_sim()
        sim.deploy(tiny_snapshot())
        before = sorted(sim.store.nodes)

        with self.assertRaises(TopologyError):
            sim.deploy(tiny_snapshot(links=[{"source": "AMF", "target": "GHOST"}]))
        self.assertEqual(sorted(sim.store.nodes), before)

    def test_snapshot_rejected_by_store_leaves_store_alone(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())
        before = sorted(sim.store.nodes)

        snap = {"nodes": [
            {"id": "A", "type": "AMF", "x": 0, "y": 0},
            {"id": "B", "type": "SMF", "x": 40, "y": 0, "ip": "192.168.1.10"},
        ]}
        with self.assertRaises(TopologyError):
            sim.deploy(snap)
        self.assertEqual(sorted(sim.store.nodes), before)
        self.assertEqual(len(sim.store.nodes), 13)
        self.assertIsNotNone(sim.allocator.pool_for("UPF"))

    def test_redeploy_replaces_everything(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())
        run_async(sim.establish("UE"))

        sim.deploy(tiny_snapshot())
        self.assertEqual(sorted(sim.store.nodes), ["AMF", "SMF"])
        self.assertEqual(sim.sessions.sessions, {})
        self.assertFalse(sim.scheduler.is_animating())


if __name__ == "__main__":
    unittest.main()
