"""
Error taxonomy of the cinema backend.

Every error knows its HTTP status and how to render itself as the JSON body
returned to the client; the Flask error handlers in ``app.py`` only call
``to_dict()``.
"""

from typing import Any, Dict, List, Optional


class CinemaError(Exception):
    status_code = 500
    message = 'Unexpected error'

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {'status': 'error', 'message': self.message}


class BadRequest(CinemaError):
    status_code = 400
    message = 'Bad request'


class ValidationError(CinemaError):
    """Field constraint violations, reported as field -> list of messages."""

    status_code = 422
    message = 'The given data was invalid'

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        super().__init__(message)
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload['errors'] = self.errors
        return payload


class NotFound(CinemaError):
    status_code = 404
    message = 'Resource not found'

    def __init__(self, resource: str, resource_id: Any = None):
        if resource_id is None:
            super().__init__(f'{resource} not found')
        else:
            super().__init__(f'{resource} {resource_id} not found')
        self.resource = resource
        self.resource_id = resource_id


class SchedulingConflict(CinemaError):
    status_code = 422
    message = 'There is already a screening scheduled in this room at this time'

    def __init__(self, room_id: int, date: str, start_time: str):
        super().__init__()
        self.room_id = room_id
        self.date = date
        self.start_time = start_time

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload['conflict'] = {
            'room_id': self.room_id,
            'date': self.date,
            'start_time': self.start_time,
        }
        return payload


class SeatUnavailable(CinemaError):
    status_code = 422
    message = 'Some of the requested seats are already booked'

    def __init__(self, seats: List[Dict[str, int]]):
        super().__init__()
        self.seats = seats

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload['seats'] = self.seats
        return payload


class AuthenticationFailure(CinemaError):
    status_code = 401
    message = 'You need to be authenticated to access this route'

    def to_dict(self) -> Dict[str, Any]:
        return {'message': self.message, 'status': self.status_code}


class InvalidCredentials(AuthenticationFailure):
    """Login with an unknown email or a wrong password."""

    message = 'Invalid credentials'

    def to_dict(self) -> Dict[str, Any]:
        return {'status': 'error', 'message': self.message}


class MalformedBookingData(CinemaError):
    """A stored seat list could not be decoded."""

    status_code = 500
    message = 'Stored booking data is corrupt'

    def __init__(self, booking_id: Optional[int], detail: str):
        super().__init__()
        self.booking_id = booking_id
        self.detail = detail

    def __str__(self) -> str:
        return f'booking {self.booking_id}: {self.detail}'


class InternalFailure(CinemaError):
    status_code = 500
    message = 'Something went wrong. Please try again later.'
