import threading
from decimal import Decimal
from unittest.mock import patch

from django.db import OperationalError, connection, connections
from django.test import TestCase, TransactionTestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from accounts.models import User, WalletTransaction
from common.utils import calculate_distance
from services.ride_management import ride_lifecycle
from services.ride_management.exceptions import SettlementError, TransportError
from services.session import Session
from realtime.hub import INSERT, UPDATE
from . import views
from .models import Ride
from .serializers import ride_to_row
from .store import RideStore
from .tasks import publish_pending_snapshot

PICKUP = (9.08, 8.67)
DESTINATION = (9.09, 8.68)


def make_user(username, role, balance="0.00"):
	return User.objects.create_user(
		username=username,
		email=f'{username}@example.com',
		password='pass1234',
		role=role,
		wallet_balance=Decimal(balance),
	)


class RideLifecycleTests(TestCase):
	def setUp(self):
		self.rider = make_user('rider', 'rider', balance='10000.00')
		self.driver_one = make_user('driver_one', 'driver')
		self.driver_two = make_user('driver_two', 'driver')

		self.rider_session = Session.from_user(self.rider)
		self.driver_one_session = Session.from_user(self.driver_one)
		self.driver_two_session = Session.from_user(self.driver_two)

	def _create_ride(self):
		result = ride_lifecycle.create_ride(self.rider_session, PICKUP, DESTINATION, 'Wuse II, Abuja')
		self.assertTrue(result.success, result.message)
		return result.ride

	def test_create_ride_prices_from_haversine_distance(self):
		ride = self._create_ride()

		meters = calculate_distance(PICKUP[0], PICKUP[1], DESTINATION[0], DESTINATION[1])
		self.assertEqual(ride.status, Ride.Status.PENDING)
		self.assertEqual(ride.price, Decimal(round(meters * 2)))
		self.assertAlmostEqual(ride.distance_km, meters / 1000)
		self.assertEqual(ride.rider_id, self.rider.id)
		self.assertEqual(ride.rider_email, 'rider@example.com')
		self.assertIsNone(ride.driver_id)

	def test_price_never_changes_after_creation(self):
		ride = self._create_ride()
		original_price = ride.price

		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)
		ride.refresh_from_db()
		self.assertEqual(ride.price, original_price)

		ride_lifecycle.complete_ride(self.driver_one_session, ride.id)
		ride.refresh_from_db()
		self.assertEqual(ride.price, original_price)

	def test_create_ride_without_destination_is_a_validation_error(self):
		result = ride_lifecycle.create_ride(self.rider_session, PICKUP, None)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'validation_error')
		self.assertEqual(Ride.objects.count(), 0)

	def test_create_ride_rejects_out_of_range_coordinates(self):
		result = ride_lifecycle.create_ride(self.rider_session, PICKUP, (123.0, 8.68))

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'validation_error')

	def test_create_ride_defaults_destination_address(self):
		result = ride_lifecycle.create_ride(self.rider_session, PICKUP, DESTINATION)

		self.assertEqual(result.ride.destination_address, 'Unknown address')

	def test_only_one_driver_can_accept(self):
		ride = self._create_ride()

		first = ride_lifecycle.accept_ride(self.driver_one_session, ride.id)
		second = ride_lifecycle.accept_ride(self.driver_two_session, ride.id)

		self.assertTrue(first.success)
		self.assertFalse(second.success)
		self.assertEqual(second.error_code, 'precondition_failed')

		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.Status.ACCEPTED)
		self.assertEqual(ride.driver_id, self.driver_one.id)
		self.assertIsNotNone(ride.accepted_at)

	def test_stale_driver_view_still_loses_the_race(self):
		ride = self._create_ride()
		# Driver two loaded the list while the ride was pending
		stale = ride_lifecycle.list_available_rides(self.driver_two_session, *PICKUP)
		self.assertEqual([item.ride.id for item in stale.rides], [ride.id])

		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)
		result = ride_lifecycle.accept_ride(self.driver_two_session, ride.id)

		self.assertFalse(result.success)
		self.assertEqual(result.message, ride_lifecycle.NO_LONGER_AVAILABLE)

		fresh = ride_lifecycle.list_available_rides(self.driver_two_session, *PICKUP)
		self.assertEqual(fresh.rides, [])

	def test_accept_loses_when_ride_is_taken_mid_update(self):
		ride = self._create_ride()
		taken = []

		def take_then_snapshot(row):
			# Another driver's UPDATE lands after our candidate read, before our write
			if not taken:
				Ride.objects.filter(pk=row.pk).update(
					status=Ride.Status.ACCEPTED,
					driver_id=self.driver_two.id,
					accepted_at=timezone.now(),
				)
				taken.append(row.pk)
			return ride_to_row(row)

		with patch('rides.store.ride_to_row', side_effect=take_then_snapshot):
			result = ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		self.assertEqual(taken, [ride.id])
		self.assertEqual(result.error_code, 'precondition_failed')
		ride.refresh_from_db()
		self.assertEqual(ride.driver_id, self.driver_two.id)

	def test_accept_cancelled_ride_fails(self):
		ride = self._create_ride()
		ride_lifecycle.cancel_ride(self.rider_session, ride.id)

		result = ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		self.assertEqual(result.error_code, 'precondition_failed')
		ride.refresh_from_db()
		self.assertIsNone(ride.driver_id)

	def test_complete_settles_wallet_then_marks_ride(self):
		ride = self._create_ride()
		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		result = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)

		self.assertTrue(result.success, result.message)
		ride.refresh_from_db()
		self.rider.refresh_from_db()
		self.assertEqual(ride.status, Ride.Status.COMPLETED)
		self.assertEqual(ride.driver_id, self.driver_one.id)
		self.assertIsNotNone(ride.completed_at)
		self.assertEqual(self.rider.wallet_balance, Decimal('10000.00') - ride.price)
		self.assertEqual(result.extra['rider_balance'], self.rider.wallet_balance)

		debit = WalletTransaction.objects.get(user=self.rider)
		self.assertEqual(debit.kind, 'debit')
		self.assertEqual(debit.amount, ride.price)
		self.assertEqual(debit.ride_id, ride.id)

	def test_zero_price_ride_can_be_completed(self):
		created = ride_lifecycle.create_ride(self.rider_session, (9.0820, 8.6752), (9.0820, 8.6752))
		self.assertEqual(created.ride.price, Decimal(0))
		ride_lifecycle.accept_ride(self.driver_one_session, created.ride.id)

		result = ride_lifecycle.complete_ride(self.driver_one_session, created.ride.id)

		self.assertTrue(result.success, result.message)
		self.assertEqual(result.ride.status, Ride.Status.COMPLETED)
		self.rider.refresh_from_db()
		self.assertEqual(self.rider.wallet_balance, Decimal('10000.00'))
		self.assertEqual(WalletTransaction.objects.get(ride_id=created.ride.id).amount, Decimal('0.00'))
		self.assertIsNone(ride_lifecycle.get_current_driver_ride(self.driver_one_session).ride)

	def test_complete_on_pending_or_cancelled_ride_is_a_noop(self):
		pending = self._create_ride()
		cancelled = self._create_ride()
		ride_lifecycle.cancel_ride(self.rider_session, cancelled.id)

		for ride in (pending, cancelled):
			result = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)
			self.assertFalse(result.success)
			self.assertEqual(result.error_code, 'precondition_failed')

		pending.refresh_from_db()
		cancelled.refresh_from_db()
		self.rider.refresh_from_db()
		self.assertEqual(pending.status, Ride.Status.PENDING)
		self.assertEqual(cancelled.status, Ride.Status.CANCELLED)
		self.assertEqual(self.rider.wallet_balance, Decimal('10000.00'))
		self.assertFalse(WalletTransaction.objects.exists())

	def test_complete_by_other_driver_fails(self):
		ride = self._create_ride()
		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		result = ride_lifecycle.complete_ride(self.driver_two_session, ride.id)

		self.assertEqual(result.error_code, 'precondition_failed')
		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.Status.ACCEPTED)

	def test_complete_twice_charges_once(self):
		ride = self._create_ride()
		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		first = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)
		second = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)

		self.assertTrue(first.success)
		self.assertEqual(second.error_code, 'precondition_failed')
		self.assertEqual(WalletTransaction.objects.filter(kind='debit').count(), 1)

	@patch('accounts.wallet.decrement_balance', side_effect=SettlementError('Wallet service unavailable'))
	def test_settlement_failure_leaves_ride_accepted(self, mock_decrement):
		ride = self._create_ride()
		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		result = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)

		mock_decrement.assert_called_once()
		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'settlement_error')
		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.Status.ACCEPTED)
		self.assertIsNone(ride.completed_at)

		# Retrying later succeeds once the wallet is reachable again
		mock_decrement.side_effect = None
		retry = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)
		self.assertTrue(retry.success)

	def test_settlement_is_rolled_back_when_ride_update_loses(self):
		ride = self._create_ride()
		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		with patch.object(RideStore, 'update', return_value=[]):
			result = ride_lifecycle.complete_ride(self.driver_one_session, ride.id)

		self.assertEqual(result.error_code, 'precondition_failed')
		self.rider.refresh_from_db()
		self.assertEqual(self.rider.wallet_balance, Decimal('10000.00'))
		self.assertFalse(WalletTransaction.objects.exists())

	def test_cancel_only_while_pending_and_only_by_owner(self):
		ride = self._create_ride()
		other_rider = make_user('other_rider', 'rider')

		not_owner = ride_lifecycle.cancel_ride(Session.from_user(other_rider), ride.id)
		self.assertEqual(not_owner.error_code, 'precondition_failed')

		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)
		after_accept = ride_lifecycle.cancel_ride(self.rider_session, ride.id)
		self.assertEqual(after_accept.error_code, 'precondition_failed')

		ride.refresh_from_db()
		self.assertEqual(ride.status, Ride.Status.ACCEPTED)

	def test_cancel_pending_ride(self):
		ride = self._create_ride()

		result = ride_lifecycle.cancel_ride(self.rider_session, ride.id)

		self.assertTrue(result.success)
		self.assertEqual(result.ride.status, Ride.Status.CANCELLED)
		self.assertIsNone(result.ride.driver_id)

	def test_list_rider_rides_newest_first(self):
		first = self._create_ride()
		second = self._create_ride()
		make_user('someone', 'rider')

		result = ride_lifecycle.list_rider_rides(self.rider_session)

		self.assertEqual([ride.id for ride in result.rides], [second.id, first.id])

	def test_current_driver_ride(self):
		ride = self._create_ride()
		self.assertIsNone(ride_lifecycle.get_current_driver_ride(self.driver_one_session).ride)

		ride_lifecycle.accept_ride(self.driver_one_session, ride.id)

		self.assertEqual(ride_lifecycle.get_current_driver_ride(self.driver_one_session).ride.id, ride.id)
		self.assertIsNone(ride_lifecycle.get_current_driver_ride(self.driver_two_session).ride)

	def test_database_outage_is_a_transport_error(self):
		with patch.object(Ride.objects, 'create', side_effect=OperationalError('connection refused')):
			result = ride_lifecycle.create_ride(self.rider_session, PICKUP, DESTINATION)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, 'transport_error')


class ConcurrentAcceptTests(TransactionTestCase):
	DRIVERS = 5

	def setUp(self):
		self.rider = make_user('rider', 'rider')
		self.drivers = [make_user(f'driver_{i}', 'driver') for i in range(self.DRIVERS)]
		self.ride = ride_lifecycle.create_ride(Session.from_user(self.rider), PICKUP, DESTINATION).ride

	def _accept(self, driver, barrier, results):
		try:
			barrier.wait()
			results[driver.id] = ride_lifecycle.accept_ride(Session.from_user(driver), self.ride.id)
		finally:
			connections.close_all()

	def test_racing_drivers_produce_at_most_one_winner(self):
		barrier = threading.Barrier(self.DRIVERS)
		results = {}
		threads = [
			threading.Thread(target=self._accept, args=(driver, barrier, results))
			for driver in self.drivers
		]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join(timeout=30)

		self.assertEqual(len(results), self.DRIVERS)
		winners = [driver_id for driver_id, result in results.items() if result.success]
		for driver_id, result in results.items():
			if driver_id not in winners:
				# SQLite may refuse a contender with a lock error instead
				self.assertIn(result.error_code, ('precondition_failed', 'transport_error'))

		self.assertLessEqual(len(winners), 1)
		if connection.vendor == 'postgresql':
			self.assertEqual(len(winners), 1)

		ride = Ride.objects.get(pk=self.ride.id)
		if winners:
			self.assertEqual(ride.status, Ride.Status.ACCEPTED)
			self.assertEqual(ride.driver_id, winners[0])
		else:
			self.assertEqual(ride.status, Ride.Status.PENDING)
			self.assertIsNone(ride.driver_id)


class RideStoreTests(TestCase):
	def setUp(self):
		self.rider = make_user('rider', 'rider')
		self.driver = make_user('driver', 'driver')
		self.store = RideStore(Session.from_user(self.rider))
		self.ride = Ride.objects.create(
			rider=self.rider,
			rider_email=self.rider.email,
			pickup_latitude=PICKUP[0],
			pickup_longitude=PICKUP[1],
			destination_latitude=DESTINATION[0],
			destination_longitude=DESTINATION[1],
			distance_km=1.5,
			price=Decimal('3000'),
		)
		self.changes = []

	def _subscribe(self, filters):
		subscription = self.store.subscribe(filters, self.changes.append)
		self.addCleanup(subscription.unsubscribe)
		return subscription

	def test_update_returns_only_modified_rows(self):
		rows = self.store.update({'status': 'cancelled'}, {'id': self.ride.id, 'status': 'pending'})
		self.assertEqual([row.id for row in rows], [self.ride.id])

		rows = self.store.update({'status': 'cancelled'}, {'id': self.ride.id, 'status': 'pending'})
		self.assertEqual(rows, [])

	def test_update_refuses_immutable_fields(self):
		with self.assertRaises(ValueError):
			self.store.update({'price': Decimal('1')}, {'id': self.ride.id})

	def test_update_requires_filters(self):
		with self.assertRaises(ValueError):
			self.store.update({'status': 'cancelled'}, {})

	def test_select_orders_newest_first(self):
		newer = Ride.objects.create(
			rider=self.rider,
			pickup_latitude=0, pickup_longitude=0,
			destination_latitude=0, destination_longitude=1,
			distance_km=111.2, price=Decimal('222390'),
		)

		rows = self.store.select({'rider_id': self.rider.id})

		self.assertEqual([row.id for row in rows], [newer.id, self.ride.id])

	def test_subscribers_hear_committed_inserts(self):
		self._subscribe({'rider_id': self.rider.id})

		with self.captureOnCommitCallbacks(execute=True):
			ride = self.store.insert({
				'rider_id': self.rider.id,
				'pickup_latitude': 1, 'pickup_longitude': 1,
				'destination_latitude': 1, 'destination_longitude': 2,
				'distance_km': 111.2, 'price': Decimal('222390'),
			})

		self.assertEqual(len(self.changes), 1)
		self.assertEqual(self.changes[0].event, INSERT)
		self.assertEqual(self.changes[0].new['id'], ride.id)

	def test_pending_subscribers_hear_rides_leaving_pending(self):
		self._subscribe({'status': 'pending'})

		with self.captureOnCommitCallbacks(execute=True):
			self.store.update(
				{'status': 'accepted', 'driver_id': self.driver.id},
				{'id': self.ride.id, 'status': 'pending'},
			)

		self.assertEqual(len(self.changes), 1)
		change = self.changes[0]
		self.assertEqual(change.event, UPDATE)
		self.assertEqual(change.old['status'], 'pending')
		self.assertEqual(change.new['status'], 'accepted')
		self.assertEqual(change.new['driver_id'], self.driver.id)

	def test_failed_precondition_publishes_nothing(self):
		self._subscribe({'id': self.ride.id})

		with self.captureOnCommitCallbacks(execute=True):
			self.store.update({'status': 'completed'}, {'id': self.ride.id, 'status': 'accepted'})

		self.assertEqual(self.changes, [])

	def test_unsubscribe_stops_delivery(self):
		subscription = self._subscribe({'id': self.ride.id})
		subscription.unsubscribe()

		with self.captureOnCommitCallbacks(execute=True):
			self.store.update({'status': 'cancelled'}, {'id': self.ride.id})

		self.assertEqual(self.changes, [])

	def test_delete_returns_and_publishes_removed_rows(self):
		self._subscribe({'rider_id': self.rider.id})

		with self.captureOnCommitCallbacks(execute=True):
			rows = self.store.delete({'id': self.ride.id})

		self.assertEqual([row.id for row in rows], [self.ride.id])
		self.assertFalse(Ride.objects.exists())
		self.assertEqual(self.changes[0].event, 'DELETE')
		self.assertIsNone(self.changes[0].new)


class RideApiTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.rider = make_user('rider', 'rider', balance='5000.00')
		self.driver = make_user('driver', 'driver')
		self.other_driver = make_user('other_driver', 'driver')

	def _post(self, view, user, data=None, **kwargs):
		request = self.factory.post('/api/rides/', data or {}, format='json')
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def _get(self, view, user):
		request = self.factory.get('/api/rides/')
		force_authenticate(request, user=user)
		return view(request)

	def _book(self, pickup=PICKUP, destination=DESTINATION):
		response = self._post(views.create_ride, self.rider, {
			'pickup_latitude': pickup[0],
			'pickup_longitude': pickup[1],
			'destination_latitude': destination[0],
			'destination_longitude': destination[1],
			'destination_address': 'Wuse II, Abuja',
		})
		self.assertEqual(response.status_code, 201, response.data)
		return response.data['id']

	def test_rider_books_ride(self):
		self._book()

		response = self._get(views.my_rides, self.rider)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['count'], 1)
		self.assertEqual(response.data['rides'][0]['status'], 'pending')

	def test_booking_without_destination_is_rejected(self):
		response = self._post(views.create_ride, self.rider, {
			'pickup_latitude': PICKUP[0],
			'pickup_longitude': PICKUP[1],
		})

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['code'], 'validation_error')

	def test_drivers_cannot_book(self):
		response = self._post(views.create_ride, self.driver, {'pickup_latitude': 1, 'pickup_longitude': 1})

		self.assertEqual(response.status_code, 403)

	def test_available_rides_are_ranked_by_distance(self):
		far = self._book()
		near = self._book(pickup=(9.1, 8.7), destination=(9.2, 8.8))

		response = self._post(views.available_rides, self.driver, {'latitude': 9.1, 'longitude': 8.7})

		self.assertEqual(response.status_code, 200)
		self.assertEqual([item['ride']['id'] for item in response.data['rides']], [near, far])
		self.assertEqual(response.data['rides'][0]['distance_text'], '0.0 km')

	def test_losing_driver_gets_conflict(self):
		ride_id = self._book()

		won = self._post(views.accept_ride, self.driver, ride_id=ride_id)
		lost = self._post(views.accept_ride, self.other_driver, ride_id=ride_id)

		self.assertEqual(won.status_code, 200)
		self.assertEqual(won.data['driver_id'], self.driver.id)
		self.assertEqual(lost.status_code, 409)
		self.assertEqual(lost.data['error'], ride_lifecycle.NO_LONGER_AVAILABLE)
		self.assertTrue(lost.data['refresh'])

	def test_complete_charges_rider(self):
		ride_id = self._book()
		self._post(views.accept_ride, self.driver, ride_id=ride_id)

		response = self._post(views.complete_ride, self.driver, ride_id=ride_id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['status'], 'completed')
		self.rider.refresh_from_db()
		self.assertEqual(self.rider.wallet_balance, Decimal('5000.00') - Ride.objects.get(pk=ride_id).price)

	@patch('accounts.wallet.decrement_balance', side_effect=SettlementError('Wallet service unavailable'))
	def test_settlement_failure_maps_to_payment_required(self, mock_decrement):
		ride_id = self._book()
		self._post(views.accept_ride, self.driver, ride_id=ride_id)

		response = self._post(views.complete_ride, self.driver, ride_id=ride_id)

		self.assertEqual(response.status_code, 402)
		self.assertEqual(Ride.objects.get(pk=ride_id).status, 'accepted')

	@patch.object(RideStore, 'select', side_effect=TransportError('Could not load rides'))
	def test_transport_failure_is_retryable(self, mock_select):
		response = self._get(views.my_rides, self.rider)

		self.assertEqual(response.status_code, 503)
		self.assertTrue(response.data['retryable'])

	def test_rider_cannot_cancel_accepted_ride(self):
		ride_id = self._book()
		self._post(views.accept_ride, self.driver, ride_id=ride_id)

		response = self._post(views.cancel_ride, self.rider, ride_id=ride_id)

		self.assertEqual(response.status_code, 409)

	def test_driver_current_ride(self):
		ride_id = self._book()
		self.assertFalse(self._get(views.current_ride, self.driver).data['has_active_ride'])

		self._post(views.accept_ride, self.driver, ride_id=ride_id)
		response = self._get(views.current_ride, self.driver)

		self.assertTrue(response.data['has_active_ride'])
		self.assertEqual(response.data['ride']['id'], ride_id)


class PendingSnapshotTaskTests(TestCase):
	@patch('realtime.broadcast.broadcast_pending_snapshot', return_value=1)
	def test_publishes_only_pending_rides(self, mock_broadcast):
		rider = make_user('rider', 'rider')
		session = Session.from_user(rider)
		kept = ride_lifecycle.create_ride(session, PICKUP, DESTINATION).ride
		dropped = ride_lifecycle.create_ride(session, PICKUP, DESTINATION).ride
		ride_lifecycle.cancel_ride(session, dropped.id)

		count = publish_pending_snapshot()

		self.assertEqual(count, 1)
		rides = mock_broadcast.call_args[0][0]
		self.assertEqual([row['id'] for row in rides], [kept.id])
