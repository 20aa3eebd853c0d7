from unittest.mock import AsyncMock, patch

from django.test import SimpleTestCase

from realtime.broadcast import group_for_filter, groups_for_change, publish_ride_change
from realtime.consumers import RideChangesConsumer
from realtime.hub import DELETE, INSERT, UPDATE, RideChange, RideChangeHub, change_matches, validate_filter
from services.matching import RerankPolicy
from services.session import Session


def row(**fields):
    base = {"id": 1, "status": "pending", "rider_id": 10, "driver_id": None}
    base.update(fields)
    return base


class ChangeMatchingTests(SimpleTestCase):
    def test_empty_filter_matches_everything(self):
        self.assertTrue(change_matches({}, RideChange(INSERT, new=row())))

    def test_old_row_match_counts(self):
        change = RideChange(UPDATE, new=row(status="accepted", driver_id=3), old=row())

        self.assertTrue(change_matches({"status": "pending"}, change))
        self.assertTrue(change_matches({"status": "accepted"}, change))
        self.assertFalse(change_matches({"status": "cancelled"}, change))

    def test_values_compare_as_strings(self):
        self.assertTrue(change_matches({"rider_id": "10"}, RideChange(INSERT, new=row())))

    def test_unknown_filter_column_rejected(self):
        with self.assertRaises(ValueError):
            validate_filter({"price": 100})

    def test_id_columns_are_coerced_to_int(self):
        self.assertEqual(validate_filter({"id": "12"}), {"id": 12})
        self.assertEqual(validate_filter({"rider_id": 7}), {"rider_id": 7})

    def test_non_integer_id_rejected(self):
        for bad in ({"id": "abc"}, {"driver_id": None}, {"rider_id": True}, {"id": "-3"}):
            with self.assertRaises(ValueError):
                validate_filter(bad)

    def test_filter_must_be_a_mapping(self):
        with self.assertRaises(ValueError):
            validate_filter(["status", "pending"])


class RideChangeHubTests(SimpleTestCase):
    def setUp(self):
        self.hub = RideChangeHub()

    def test_delivers_to_matching_subscribers_only(self):
        pending, mine = [], []
        self.hub.subscribe({"status": "pending"}, pending.append)
        self.hub.subscribe({"rider_id": 99}, mine.append)

        delivered = self.hub.publish(RideChange(INSERT, new=row()))

        self.assertEqual(delivered, 1)
        self.assertEqual(len(pending), 1)
        self.assertEqual(mine, [])

    def test_unsubscribe_is_idempotent(self):
        received = []
        subscription = self.hub.subscribe(None, received.append)

        subscription.unsubscribe()
        subscription.unsubscribe()
        self.hub.publish(RideChange(DELETE, old=row()))

        self.assertEqual(received, [])
        self.assertEqual(len(self.hub), 0)

    def test_failing_subscriber_does_not_block_others(self):
        def explode(change):
            raise RuntimeError("subscriber bug")

        received = []
        self.hub.subscribe(None, explode)
        self.hub.subscribe(None, received.append)

        with self.assertLogs("realtime.hub", level="ERROR"):
            delivered = self.hub.publish(RideChange(INSERT, new=row()))

        self.assertEqual(delivered, 1)
        self.assertEqual(len(received), 1)


class BroadcastGroupTests(SimpleTestCase):
    def test_group_for_filter(self):
        self.assertEqual(group_for_filter({"id": 5}), "ride_5")
        self.assertEqual(group_for_filter({"status": "pending"}), "rides_status_pending")
        self.assertEqual(group_for_filter({"rider_id": 2}), "rides_rider_2")
        self.assertEqual(group_for_filter({"driver_id": 3}), "rides_driver_3")

    def test_group_for_filter_needs_exactly_one_column(self):
        with self.assertRaises(ValueError):
            group_for_filter({})
        with self.assertRaises(ValueError):
            group_for_filter({"status": "pending", "rider_id": 2})

    def test_accept_reaches_both_status_groups_and_driver(self):
        change = RideChange(UPDATE, new=row(status="accepted", driver_id=3), old=row())

        self.assertEqual(
            groups_for_change(change),
            ["ride_1", "rides_driver_3", "rides_rider_10", "rides_status_accepted", "rides_status_pending"],
        )

    @patch("realtime.broadcast._group_send", return_value=4)
    def test_publish_sends_ride_change_event(self, mock_send):
        stats = publish_ride_change(RideChange(INSERT, new=row()))

        self.assertEqual(stats["groups"], 4)
        groups, message = mock_send.call_args[0]
        self.assertIn("rides_status_pending", groups)
        self.assertEqual(message["type"], "ride_change")
        self.assertEqual(message["event"], INSERT)


class RideChangesConsumerTests(SimpleTestCase):
    def _consumer(self, role="driver", position=None):
        consumer = RideChangesConsumer()
        consumer.session = Session(actor_id=3, email="driver@example.com", role=role)
        consumer.user_id = 3
        consumer.role = role
        consumer.joined_groups = set()
        consumer.subscribed_filters = {}
        consumer.position = position
        consumer.send_json = AsyncMock()
        return consumer

    async def test_riders_cannot_send_locations(self):
        consumer = self._consumer(role="rider")

        await consumer.route_message("location_update", {"latitude": 1, "longitude": 1})

        consumer.send_json.assert_awaited_once()
        self.assertEqual(consumer.send_json.await_args[0][0]["type"], "error")

    async def test_location_update_reranks_through_policy(self):
        consumer = self._consumer()
        consumer.rerank_policy = type("AlwaysRerank", (), {"should_rerank": lambda self, lat, lon: True})()
        consumer._send_ranked_pending = AsyncMock()

        await consumer.route_message("location_update", {"latitude": 9.08, "longitude": 8.67})

        self.assertEqual(consumer.position, (9.08, 8.67))
        consumer._send_ranked_pending.assert_awaited_once()

    async def test_location_update_rejects_bad_coordinates(self):
        consumer = self._consumer()
        consumer.rerank_policy = RerankPolicy()
        consumer._send_ranked_pending = AsyncMock()

        for data in ({"latitude": "north", "longitude": 8.67}, {"latitude": 123.0, "longitude": 8.67}):
            await consumer.route_message("location_update", data)
            message = consumer.send_json.await_args[0][0]
            self.assertEqual(message["type"], "error")
            self.assertEqual(message["code"], "validation_error")

        self.assertIsNone(consumer.position)
        consumer._send_ranked_pending.assert_not_awaited()

    async def test_subscribe_rejects_non_integer_ride_id(self):
        consumer = self._consumer()
        consumer._may_subscribe = AsyncMock(return_value=True)

        await consumer.route_message("subscribe", {"filter": {"id": "abc"}})

        message = consumer.send_json.await_args[0][0]
        self.assertEqual(message["type"], "error")
        self.assertEqual(message["code"], "validation_error")
        consumer._may_subscribe.assert_not_awaited()

    async def test_subscribe_rejects_multi_column_filter(self):
        consumer = self._consumer()

        await consumer.route_message("subscribe", {"filter": {"status": "pending", "rider_id": 3}})

        self.assertEqual(consumer.send_json.await_args[0][0]["type"], "error")
        self.assertEqual(consumer.joined_groups, set())

    async def test_snapshot_is_ranked_for_positioned_driver(self):
        consumer = self._consumer(position=(0.0, 0.0))
        rides = [
            {"id": 1, "pickup_latitude": 0.01, "pickup_longitude": 0.0},
            {"id": 2, "pickup_latitude": None, "pickup_longitude": None},
            {"id": 3, "pickup_latitude": 0.001, "pickup_longitude": 0.0},
        ]

        await consumer.pending_rides_snapshot({"type": "pending_rides_snapshot", "rides": rides})

        message = consumer.send_json.await_args[0][0]
        self.assertEqual(message["type"], "pending_rides")
        self.assertEqual([item["ride"]["id"] for item in message["rides"]], [3, 1, 2])

    async def test_snapshot_without_position_is_forwarded_as_is(self):
        consumer = self._consumer()

        await consumer.pending_rides_snapshot({"type": "pending_rides_snapshot", "rides": [{"id": 1}]})

        message = consumer.send_json.await_args[0][0]
        self.assertEqual(message["type"], "rides_snapshot")
        self.assertEqual(message["rides"], [{"id": 1}])

    async def test_ride_change_is_forwarded(self):
        consumer = self._consumer()

        await consumer.ride_change({"type": "ride_change", "event": DELETE, "new": None, "old": row()})

        consumer.send_json.assert_awaited_once_with({"type": "ride_change", "event": DELETE, "new": None, "old": row()})
