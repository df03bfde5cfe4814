"""
Pydantic schemas for request validation and for the stored seat lists.
"""

import datetime as dt
import re
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

START_TIME_RE = re.compile(r'^([01]?[0-9]|2[0-3]):[0-5][0-9]$')
MIN_RELEASE_YEAR = 1900
MAX_DURATION = 1000
MAX_ROOM_SIDE = 500
# largest value an SQLite INTEGER column can hold
MAX_ID = 2 ** 63 - 1

BOOKING_STATUSES = ('pending', 'confirmed', 'cancelled')
CANCELLED = 'cancelled'


def max_release_year() -> int:
    return dt.date.today().year + 1


def normalize_start_time(value: str) -> str:
    value = value.strip()
    if not START_TIME_RE.match(value):
        raise ValueError('start_time must be a 24h time in HH:MM format')
    hours, minutes = value.split(':')
    return f'{int(hours):02d}:{minutes}'


# ---------- SEAT ----------
class Seat(BaseModel):
    row: int = Field(..., ge=1, le=MAX_ID)
    seat: int = Field(..., ge=1, le=MAX_ID)

    def to_dict(self) -> Dict[str, int]:
        return {'row': self.row, 'seat': self.seat}


SeatList = TypeAdapter(List[Seat])


# ---------- MOVIE ----------
class MovieCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    duration: int = Field(..., ge=1, le=MAX_DURATION)
    director: str = Field(..., min_length=1, max_length=255)
    genre: str = Field(..., min_length=1, max_length=255)
    release_year: int = Field(..., ge=MIN_RELEASE_YEAR)

    @field_validator('release_year')
    @classmethod
    def _release_year(cls, v: int) -> int:
        if v > max_release_year():
            raise ValueError(f'release_year may not be greater than {max_release_year()}')
        return v


class MovieUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    duration: Optional[int] = Field(None, ge=1, le=MAX_DURATION)
    director: Optional[str] = Field(None, min_length=1, max_length=255)
    genre: Optional[str] = Field(None, min_length=1, max_length=255)
    release_year: Optional[int] = Field(None, ge=MIN_RELEASE_YEAR)

    @field_validator('release_year')
    @classmethod
    def _release_year(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v > max_release_year():
            raise ValueError(f'release_year may not be greater than {max_release_year()}')
        return v


# ---------- SCREENING ----------
class ScreeningCreate(BaseModel):
    movie_id: int = Field(..., ge=1, le=MAX_ID)
    room_id: int = Field(..., ge=1, le=MAX_ID)
    date: dt.date
    start_time: str

    @field_validator('start_time')
    @classmethod
    def _start_time(cls, v: str) -> str:
        return normalize_start_time(v)


class ScreeningUpdate(BaseModel):
    movie_id: Optional[int] = Field(None, ge=1, le=MAX_ID)
    room_id: Optional[int] = Field(None, ge=1, le=MAX_ID)
    date: Optional[dt.date] = None
    start_time: Optional[str] = None

    @field_validator('start_time')
    @classmethod
    def _start_time(cls, v: Optional[str]) -> Optional[str]:
        return normalize_start_time(v) if v is not None else v


# ---------- ROOM ----------
class RoomCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    rows: int = Field(..., ge=1, le=MAX_ROOM_SIDE)
    seats_per_row: int = Field(..., ge=1, le=MAX_ROOM_SIDE)


# ---------- BOOKING ----------
class BookingCreate(BaseModel):
    seats: List[Seat] = Field(..., min_length=1)


# ---------- AUTH ----------
class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$', max_length=255)
    password: str = Field(..., min_length=8)


Schema = TypeVar('Schema', bound=BaseModel)


def _field_name(loc) -> str:
    return '.'.join(str(part) for part in loc) or '__root__'


def error_map(exc: PydanticValidationError) -> Dict[str, List[str]]:
    """Turn a pydantic error into the field -> messages mapping the API returns."""
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        message = err['msg']
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        errors.setdefault(_field_name(err['loc']), []).append(message)
    return errors


def validate(schema: Type[Schema], data: Mapping[str, Any], message: Optional[str] = None) -> Schema:
    try:
        return schema.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(error_map(exc), message) from exc
