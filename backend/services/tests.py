import math
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from common.utils import EARTH_RADIUS_METERS, calculate_distance, is_valid_coordinate, safe_distance
from rides.models import Ride
from services.matching import RerankPolicy, rank_rides_by_distance
from services.ride_management.pricing import estimate_fare
from services.session import Session

# Meters per degree of latitude along a meridian
METERS_PER_DEGREE = EARTH_RADIUS_METERS * math.pi / 180


def ride_at(label, meters_north=None):
    """Row dict whose pickup sits meters_north of (0, 0); None means no pickup."""
    if meters_north is None:
        return {"label": label, "pickup_latitude": None, "pickup_longitude": None}
    return {"label": label, "pickup_latitude": meters_north / METERS_PER_DEGREE, "pickup_longitude": 0.0}


class DistanceTests(SimpleTestCase):
    def test_identical_points_are_zero_apart(self):
        self.assertEqual(calculate_distance(9.082, 8.6753, 9.082, 8.6753), 0)

    def test_one_degree_of_longitude_on_equator(self):
        self.assertAlmostEqual(calculate_distance(0, 0, 0, 1), 111195, delta=50)

    def test_distance_is_symmetric(self):
        there = calculate_distance(9.08, 8.67, 6.52, 3.38)
        back = calculate_distance(6.52, 3.38, 9.08, 8.67)

        self.assertAlmostEqual(there, back, places=6)

    def test_coordinate_validation(self):
        self.assertTrue(is_valid_coordinate(90, -180))
        self.assertFalse(is_valid_coordinate(90.1, 0))
        self.assertFalse(is_valid_coordinate(None, 0))
        self.assertFalse(is_valid_coordinate("north", 0))
        self.assertFalse(is_valid_coordinate(float("nan"), 0))

    def test_safe_distance_returns_none_for_bad_points(self):
        self.assertIsNone(safe_distance(0, 0, None, 1))
        self.assertIsNone(safe_distance(0, 0, 200, 1))
        self.assertIsNotNone(safe_distance("0", "0", "0", "1"))


class PricingTests(SimpleTestCase):
    def test_price_is_rounded_distance_times_rate(self):
        fare = estimate_fare((9.08, 8.67), (9.09, 8.68))

        meters = calculate_distance(9.08, 8.67, 9.09, 8.68)
        self.assertEqual(fare.price, Decimal(round(meters * 2)))
        self.assertEqual(fare.distance_meters, meters)
        self.assertAlmostEqual(fare.distance_km, meters / 1000)

    def test_same_trip_always_costs_the_same(self):
        first = estimate_fare((9.08, 8.67), (9.09, 8.68))
        second = estimate_fare((9.08, 8.67), (9.09, 8.68))

        self.assertEqual(first, second)

    @override_settings(RIDE_PRICE_PER_METER=3)
    def test_rate_comes_from_settings(self):
        fare = estimate_fare((0, 0), (0, 1))

        self.assertEqual(fare.price, Decimal(round(fare.distance_meters * 3)))

    def test_explicit_rate_wins(self):
        fare = estimate_fare((0, 0), (0, 1), rate=1)

        self.assertEqual(fare.price, Decimal(round(fare.distance_meters)))

    def test_zero_length_trip_is_free(self):
        self.assertEqual(estimate_fare((1, 1), (1, 1)).price, Decimal(0))


class RankingTests(SimpleTestCase):
    def test_closest_first_unknown_last_in_input_order(self):
        rides = [
            ride_at("a", 50),
            ride_at("b"),
            ride_at("c", 10),
            ride_at("d"),
            ride_at("e", 5),
        ]

        ranked = rank_rides_by_distance(rides, 0.0, 0.0)

        self.assertEqual([item.ride["label"] for item in ranked], ["e", "c", "a", "b", "d"])
        self.assertAlmostEqual(ranked[0].distance_meters, 5, places=3)
        self.assertIsNone(ranked[-1].distance_meters)

    def test_equal_distances_keep_input_order(self):
        rides = [ride_at("first", 20), ride_at("second", 20), ride_at("third", 20)]

        ranked = rank_rides_by_distance(rides, 0.0, 0.0)

        self.assertEqual([item.ride["label"] for item in ranked], ["first", "second", "third"])

    def test_invalid_pickup_is_unknown(self):
        rides = [{"label": "broken", "pickup_latitude": 123.0, "pickup_longitude": 0}, ride_at("ok", 1)]

        ranked = rank_rides_by_distance(rides, 0.0, 0.0)

        self.assertEqual([item.ride["label"] for item in ranked], ["ok", "broken"])

    def test_accepts_model_instances(self):
        near = Ride(id=1, pickup_latitude=0.001, pickup_longitude=0.0)
        far = Ride(id=2, pickup_latitude=0.01, pickup_longitude=0.0)

        ranked = rank_rides_by_distance([far, near], 0.0, 0.0)

        self.assertEqual([item.ride.id for item in ranked], [1, 2])

    def test_empty_input(self):
        self.assertEqual(rank_rides_by_distance([], 0.0, 0.0), [])


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RerankPolicyTests(SimpleTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.policy = RerankPolicy(min_distance_meters=10, min_interval_seconds=5, clock=self.clock)

    def test_first_sample_always_reranks(self):
        self.assertTrue(self.policy.should_rerank(0.0, 0.0))
        self.assertEqual(self.policy.last_position, (0.0, 0.0))

    def test_small_quick_moves_are_suppressed(self):
        self.policy.should_rerank(0.0, 0.0)
        self.clock.now = 1.0

        self.assertFalse(self.policy.should_rerank(5 / METERS_PER_DEGREE, 0.0))
        self.assertEqual(self.policy.last_position, (0.0, 0.0))

    def test_moving_far_enough_reranks(self):
        self.policy.should_rerank(0.0, 0.0)
        self.clock.now = 1.0

        self.assertTrue(self.policy.should_rerank(15 / METERS_PER_DEGREE, 0.0))

    def test_waiting_long_enough_reranks(self):
        self.policy.should_rerank(0.0, 0.0)
        self.clock.now = 5.0

        self.assertTrue(self.policy.should_rerank(0.0, 0.0))

    def test_distance_is_measured_from_last_ranked_position(self):
        self.policy.should_rerank(0.0, 0.0)
        results = []
        for step in range(1, 4):
            self.clock.now = step * 0.5
            results.append(self.policy.should_rerank(step * 6 / METERS_PER_DEGREE, 0.0))

        # 6 m, then 12 m from the start, then 6 m from the re-ranked point
        self.assertEqual(results, [False, True, False])

    @override_settings(RIDES_RERANK_MIN_DISTANCE_METERS=100, RIDES_RERANK_MIN_INTERVAL_SECONDS=60)
    def test_thresholds_default_from_settings(self):
        policy = RerankPolicy()

        self.assertEqual(policy.min_distance_meters, 100)
        self.assertEqual(policy.min_interval_seconds, 60)


class SessionTests(SimpleTestCase):
    def test_from_user(self):
        class StubUser:
            pk = 7
            email = "driver@example.com"
            role = "driver"

        session = Session.from_user(StubUser())

        self.assertEqual(session, Session(actor_id=7, email="driver@example.com", role="driver"))
        self.assertTrue(session.is_driver)
        self.assertFalse(session.is_rider)
