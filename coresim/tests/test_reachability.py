import itertools
import unittest

from coresim.reachability import Reachability
from coresim.topology import TopologyStore


def ran_store():
    store = TopologyStore()
    for uid, kind in (("UE", "UE"), ("gNB", "gNB"), ("AMF", "AMF"), ("SMF", "SMF"), ("UPF", "UPF")):
        store.add_node(uid, kind)
    store.connect("UE", "gNB", "Radio")
    store.connect("gNB", "AMF", "N2")
    bus = store.add_bus()
    store.attach("AMF", bus.bus_id)
    store.attach("SMF", bus.bus_id)
    return store


class TestReachability(unittest.TestCase):
    def test_direct_link_and_shared_bus(self):
        store = ran_store()
        reach = Reachability(store)
        self.assertTrue(reach.are_connected("gNB", "AMF"))
        self.assertTrue(reach.are_connected("AMF", "SMF"))
        self.assertFalse(reach.are_connected("SMF", "UPF"))

    def test_ue_reaches_amf_through_gnb(self):
        store = ran_store()
        reach = Reachability(store)
        self.assertTrue(reach.are_connected("UE", "AMF"))
        self.assertEqual(reach.bridge_path("UE", "AMF"), ["UE", "gNB", "AMF"])
        # gNB shares no bus with SMF, so one radio hop is not enough.
        self.assertFalse(reach.are_connected("UE", "SMF"))

    def test_bridge_needs_exactly_one_terminal(self):
        store = ran_store()
        store.add_node("UE2", "UE")
        store.connect("UE2", "gNB", "Radio")
        reach = Reachability(store)
        self.assertFalse(reach.are_connected("UE", "UE2"))

    def test_symmetric_for_all_pairs(self):
        store = ran_store()
        store.add_node("gNB2", "gNB")
        store.add_node("UE2", "UE")
        store.connect("UE2", "gNB2")
        store.connect("gNB2", "SMF")
        reach = Reachability(store)
        for a, b in itertools.product(store.nodes, repeat=2):
            self.assertEqual(reach.are_connected(a, b), reach.are_connected(b, a), (a, b))

    def test_terminals_on_bus_reach_anchor(self):
        store = TopologyStore()
        for uid, kind in (("UE1", "UE"), ("UE2", "UE"), ("SMF", "SMF")):
            store.add_node(uid, kind)
        bus = store.add_bus()
        for uid in ("UE1", "UE2", "SMF"):
            store.attach(uid, bus.bus_id)
        reach = Reachability(store)
        self.assertTrue(reach.are_connected("UE1", "SMF"))
        self.assertTrue(reach.are_connected("UE2", "SMF"))

    def test_unknown_and_deleted_nodes_are_unreachable(self):
        store = ran_store()
        reach = Reachability(store)
        self.assertFalse(reach.are_connected("GHOST", "PHANTOM"))
        self.assertFalse(reach.are_connected("UE", "GHOST"))

        store.remove_node("gNB")
        self.assertFalse(reach.are_connected("UE", "AMF"))
        self.assertFalse(reach.are_connected("gNB", "AMF"))

    def test_depth_bounds_radio_hops(self):
        store = TopologyStore()
        for uid, kind in (("UE", "UE"), ("gNB1", "gNB"), ("gNB2", "gNB"), ("AMF", "AMF")):
            store.add_node(uid, kind)
        store.connect("UE", "gNB1")
        store.connect("gNB1", "gNB2", "Xn")
        store.connect("gNB2", "AMF", "N2")

        self.assertFalse(Reachability(store, max_depth=1).are_connected("UE", "AMF"))
        deep = Reachability(store, max_depth=2)
        self.assertTrue(deep.are_connected("UE", "AMF"))
        self.assertEqual(deep.bridge_path("UE", "AMF"), ["UE", "gNB1", "gNB2", "AMF"])

    def test_depth_zero_disables_bridging(self):
        store = ran_store()
        self.assertFalse(Reachability(store, max_depth=0).are_connected("UE", "AMF"))


if __name__ == "__main__":
    unittest.main()
