import asyncio
import unittest

from coresim.config import EngineConfig
from coresim.core import CoreSim
from coresim.deploy import core_lab_snapshot


def run_async(coro):
    return asyncio.run(coro)


def fast_sim():
    return CoreSim(EngineConfig(delay_scale=0.0, token_speed=1000.0, tick_interval_sec=0.001, seed=7))


class TestCoreSim(unittest.TestCase):
    def test_boot_node_reports_stable(self):
        sim = fast_sim()
        sim.store.add_node("AMF", "AMF", status="failed")

        self.assertTrue(run_async(sim.boot_node("AMF")))
        self.assertEqual(sim.store.get("AMF").status, "stable")
        self.assertEqual(sim.log.messages("AMF"), ["Starting AMF-1...", "AMF-1 is stable"])

    def test_boot_aborts_when_node_fails_meanwhile(self):
        sim = fast_sim()
        sim.store.add_node("SMF", "SMF")

        async def boot_and_fail():
            task = asyncio.ensure_future(sim.boot_node("SMF"))
            await asyncio.sleep(0)
            sim.fail_node("SMF")
            return await task

        self.assertFalse(run_async(boot_and_fail()))
        self.assertEqual(sim.store.get("SMF").status, "failed")

    def test_linking_upf_to_data_network_creates_pool(self):
        sim = fast_sim()
        sim.store.add_node("UPF", "UPF")
        sim.store.add_node("DN", "ext-dn")
        self.assertIsNone(sim.allocator.pool_for("UPF"))

        sim.store.connect("DN", "UPF", "N6")
        pool = sim.allocator.pool_for("UPF")
        self.assertIsNotNone(pool)
        self.assertEqual(pool.network, "10.0.0.0/28")

    def test_run_pdu_session_summary(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())

        out = run_async(sim.run_pdu_session("UE", release=True))

        self.assertTrue(out["established"])
        self.assertTrue(out["released"])
        self.assertEqual(out["state"], "RELEASED")
        self.assertEqual(out["assignedIP"], "10.0.0.2")
        self.assertEqual(out["tunInterface"]["name"], "tun_ue1")
        self.assertEqual(out["log"]["schema"], "coresim-event-log/v1")

    def test_run_pdu_session_reports_failure(self):
        sim = fast_sim()
        out = run_async(sim.run_pdu_session("UE"))
        self.assertFalse(out["established"])
        self.assertEqual(out["state"], "IDLE")
        self.assertIsNone(out["tunInterface"])

    def test_redeploy_during_establishment_abandons_the_flow(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())
        redeployed = []

        def redeploy(rec):
            if rec.message == "Nsmf_PDUSession_Create (HTTP/2 POST) → SMF" and not redeployed:
                redeployed.append(rec)
                sim.deploy(core_lab_snapshot())

        sim.log.subscribe(redeploy)
        self.assertFalse(run_async(sim.establish("UE")))

        self.assertEqual(len(redeployed), 1)
        self.assertEqual(sim.allocator.pool_for("UPF").assigned, {})
        self.assertIsNone(sim.store.get("UE").config.tun_interface)
        self.assertIsNone(sim.store.get("UE").config.pdu_session)
        self.assertEqual(sim.sessions.session_state("UE"), "IDLE")
        self.assertTrue(any("abandoned" in r.message for r in sim.log.records(node_id="UE", level="WARNING")))

        # The fresh topology is fully usable.
        self.assertTrue(run_async(sim.establish("UE")))
        self.assertEqual(sim.store.get("UE").config.tun_interface.ip, "10.0.0.2")

    def test_reset_while_token_in_flight_abandons_the_flow(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())

        async def reset_mid_flight():
            task = asyncio.ensure_future(sim.establish("UE"))
            while not any(t.interface == "Nsmf_PDUSession" for t in sim.scheduler.tokens()):
                await asyncio.sleep(0)
            sim.deploy(core_lab_snapshot())
            return await task

        self.assertFalse(run_async(reset_mid_flight()))
        self.assertEqual(sim.allocator.pool_for("UPF").assigned, {})
        self.assertIsNone(sim.store.get("UE").config.tun_interface)
        self.assertEqual(sim.sessions.session_state("UE"), "IDLE")

    def test_redeploy_during_release_leaves_new_topology_alone(self):
        sim = fast_sim()
        sim.deploy(core_lab_snapshot())
        self.assertTrue(run_async(sim.establish("UE")))

        def redeploy(rec):
            if rec.message == "N4 Session Release Request → UPF":
                sim.log.unsubscribe(redeploy)
                sim.deploy(core_lab_snapshot())

        sim.log.subscribe(redeploy)
        self.assertFalse(run_async(sim.release("UE")))
        self.assertEqual(sim.sessions.session_state("UE"), "IDLE")
        self.assertNotIn("PDU session RELEASED", sim.log.messages("UE"))


if __name__ == "__main__":
    unittest.main()
