import importlib
import json
import os
import unittest
from unittest.mock import MagicMock, patch

from car_rental.models.bookings import BookingStatus
from car_rental.utils.custom_exceptions import Forbidden, NotFoundException
from fakes import api_event, sample_booking


class GetBookingsTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.env = patch.dict(os.environ, {"TABLE_NAME": "test-table"}, clear=False)
        cls.env.start()
        cls.resource = patch("car_rental.handlers.bookings.get_bookings.resource")
        mock_res = cls.resource.start()
        mock_res.return_value.Table.return_value = MagicMock()
        import car_rental.handlers.bookings.get_bookings as mod
        cls.mod = importlib.reload(mod)

    @classmethod
    def tearDownClass(cls):
        cls.resource.stop()
        cls.env.stop()

    def test_get_booking_success(self):
        with patch.object(self.mod.booking_service, "get_booking", return_value=sample_booking()) as mock_get:
            resp = self.mod.get_booking(api_event(path={"booking_id": "b1"}), None)
        self.assertEqual(200, resp["statusCode"])
        self.assertEqual("b1", mock_get.call_args[0][0])
        data = json.loads(resp["body"])["data"]
        self.assertEqual("PENDING", data["status"])
        self.assertNotIn("verification_token", data)

    def test_get_booking_missing_path_param(self):
        resp = self.mod.get_booking(api_event(), None)
        self.assertEqual(400, resp["statusCode"])

    def test_get_booking_not_owner(self):
        with patch.object(self.mod.booking_service, "get_booking", side_effect=Forbidden("nope")):
            resp = self.mod.get_booking(api_event(path={"booking_id": "b1"}), None)
        self.assertEqual(403, resp["statusCode"])

    def test_get_booking_not_found(self):
        with patch.object(
            self.mod.booking_service, "get_booking", side_effect=NotFoundException("booking", "b1")
        ):
            resp = self.mod.get_booking(api_event(path={"booking_id": "b1"}), None)
        self.assertEqual(404, resp["statusCode"])

    def test_get_user_bookings_passes_requested_user(self):
        bookings = [sample_booking("b2", BookingStatus.CONFIRMED), sample_booking("b1")]
        with patch.object(self.mod.booking_service, "get_user_bookings", return_value=bookings) as mock_get:
            resp = self.mod.get_user_bookings(
                api_event(role="ADMIN", query={"user_id": "u9"}), None
            )
        self.assertEqual(200, resp["statusCode"])
        actor, user_id = mock_get.call_args[0]
        self.assertTrue(actor.is_admin)
        self.assertEqual("u9", user_id)
        self.assertEqual(["b2", "b1"], [b["booking_id"] for b in json.loads(resp["body"])["data"]])

    def test_get_user_bookings_unauthenticated(self):
        resp = self.mod.get_user_bookings(api_event(user_id=None), None)
        self.assertEqual(401, resp["statusCode"])

    def test_get_car_bookings_generic_error(self):
        with patch.object(self.mod.booking_service, "get_car_bookings", side_effect=RuntimeError("boom")):
            resp = self.mod.get_car_bookings(api_event(path={"car_id": "C1"}, role="ADMIN"), None)
        self.assertEqual(500, resp["statusCode"])


if __name__ == "__main__":
    unittest.main()
