import unittest

from coresim.paths import PathPlanner, Point
from coresim.topology import TopologyError, TopologyStore


class TestPathPlanner(unittest.TestCase):
    def test_direct_path_without_common_bus(self):
        store = TopologyStore()
        store.add_node("UE", "UE", x=33, y=342)
        store.add_node("gNB", "gNB", x=182, y=342)
        store.connect("UE", "gNB", "Radio")

        path = PathPlanner(store).compute_path("UE", "gNB")
        self.assertEqual(path, [Point(33, 342), Point(182, 342)])

    def test_horizontal_bus_route_slides_along_bus(self):
        store = TopologyStore()
        store.add_node("AMF", "AMF", x=274, y=222)
        store.add_node("SMF", "SMF", x=395, y=228)
        bus = store.add_bus(orientation="horizontal", x=110, y=152)
        store.attach("AMF", bus.bus_id)
        store.attach("SMF", bus.bus_id)

        path = PathPlanner(store).compute_path("AMF", "SMF")
        self.assertEqual(path, [
            Point(274, 222),
            Point(274, 152),
            Point(395, 152),
            Point(395, 152),
            Point(395, 228),
        ])

    def test_close_projections_skip_the_slide(self):
        store = TopologyStore()
        store.add_node("A", "NRF", x=100, y=50)
        store.add_node("B", "PCF", x=105, y=250)
        bus = store.add_bus(y=150)
        store.attach("A", bus.bus_id)
        store.attach("B", bus.bus_id)

        path = PathPlanner(store).compute_path("A", "B")
        self.assertEqual(len(path), 4)
        self.assertEqual(path[1], Point(100, 150))
        self.assertEqual(path[2], Point(105, 150))

    def test_vertical_bus_projects_sideways(self):
        store = TopologyStore()
        store.add_node("A", "NRF", x=50, y=20)
        store.add_node("B", "UDM", x=60, y=200)
        bus = store.add_bus(orientation="vertical", x=100, y=0)
        store.attach("A", bus.bus_id)
        store.attach("B", bus.bus_id)

        path = PathPlanner(store).compute_path("A", "B")
        self.assertEqual(path[0], Point(50, 20))
        self.assertEqual(path[1], Point(100, 20))
        self.assertEqual(path[2], Point(100, 200))
        self.assertEqual(path[-1], Point(60, 200))

    def test_unknown_endpoint_raises(self):
        store = TopologyStore()
        store.add_node("A", "AMF")
        with self.assertRaises(TopologyError):
            PathPlanner(store).compute_path("A", "GHOST")


if __name__ == "__main__":
    unittest.main()
