"""
Cinema backend - data model

Each class is a plain value object plus the class methods that load and store
it. Loaders always return fully populated objects: a movie comes back with
its screenings, each screening with its room and bookings. Nothing is fetched
lazily on attribute access.
"""

import hashlib
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import date as Date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from pydantic import ValidationError as PydanticValidationError
from werkzeug.security import check_password_hash, generate_password_hash

from .availability import unavailable_seats
from .errors import MalformedBookingData, NotFound, SchedulingConflict, SeatUnavailable, ValidationError
from .scheduling import ensure_no_conflict
from .schemas import CANCELLED, Seat, SeatList

logger = logging.getLogger(__name__)


def get_db() -> sqlite3.Connection:
    """Open a connection to the configured database"""
    conn = sqlite3.connect(
        current_app.config['DATABASE'],
        timeout=current_app.config.get('DATABASE_TIMEOUT', 5.0),
    )
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


@contextmanager
def transaction():
    """
    Run a block inside BEGIN IMMEDIATE.

    The write lock is taken before the first statement, so a check followed
    by an insert cannot interleave with another writer doing the same.
    """
    conn = get_db()
    conn.isolation_level = None
    conn.execute('BEGIN IMMEDIATE')
    try:
        yield conn
        conn.execute('COMMIT')
    except BaseException:
        conn.execute('ROLLBACK')
        raise
    finally:
        conn.close()


def week_fields(day: Date) -> Tuple[int, int]:
    """ISO week number and ISO weekday (1 = Monday) of a date"""
    iso = day.isocalendar()
    return iso[1], iso[2]


def require_exists(conn: sqlite3.Connection, table: str, row_id: int, field: str) -> None:
    try:
        row = conn.execute(f'SELECT 1 FROM {table} WHERE id = ?', (row_id,)).fetchone()
    except OverflowError:
        row = None
    if not row:
        label = field.replace('_', ' ')
        raise ValidationError({field: [f'The selected {label} is invalid.']})


def decode_seats(raw: Optional[str], booking_id: Optional[int] = None) -> List[Seat]:
    """Decode the JSON seat list stored on a booking row."""
    if raw is None or raw.strip() in ('', 'null'):
        return []
    try:
        return SeatList.validate_json(raw)
    except PydanticValidationError as exc:
        raise MalformedBookingData(booking_id, str(exc)) from exc


def encode_seats(seats: Iterable[Seat]) -> str:
    return SeatList.dump_json(list(seats)).decode()


# ===== CLASS ROOM =====
class Room:
    """
    Room - seating geometry of an auditorium
    Attributes:
        - id: int
        - name: str
        - rows: int
        - seats_per_row: int
    """

    def __init__(self, name: str, rows: int, seats_per_row: int, id: int = None):
        self.id = id
        self.name = name
        self.rows = rows
        self.seats_per_row = seats_per_row

    @classmethod
    def from_row(cls, row: sqlite3.Row, prefix: str = '') -> 'Room':
        return cls(
            id=row[f'{prefix}id'],
            name=row[f'{prefix}name'],
            rows=row[f'{prefix}seat_rows'],
            seats_per_row=row[f'{prefix}seats_per_row'],
        )

    @classmethod
    def all(cls) -> List['Room']:
        conn = get_db()
        try:
            rows = conn.execute('SELECT * FROM rooms ORDER BY id').fetchall()
        finally:
            conn.close()
        return [cls.from_row(row) for row in rows]

    @classmethod
    def find(cls, room_id: int) -> 'Room':
        conn = get_db()
        try:
            row = conn.execute('SELECT * FROM rooms WHERE id = ?', (room_id,)).fetchone()
        except OverflowError:
            row = None
        finally:
            conn.close()
        if not row:
            raise NotFound('Room', room_id)
        return cls.from_row(row)

    @classmethod
    def create(cls, name: str, rows: int, seats_per_row: int) -> 'Room':
        room = cls(name=name, rows=rows, seats_per_row=seats_per_row)
        with transaction() as conn:
            cursor = conn.execute(
                'INSERT INTO rooms (name, seat_rows, seats_per_row) VALUES (?, ?, ?)',
                (name, rows, seats_per_row),
            )
            room.id = cursor.lastrowid
        logger.info('room_created id=%s rows=%s seats_per_row=%s', room.id, rows, seats_per_row)
        return room

    def delete(self) -> None:
        try:
            with transaction() as conn:
                conn.execute('DELETE FROM rooms WHERE id = ?', (self.id,))
        except sqlite3.IntegrityError as exc:
            raise ValidationError(
                {'room': ['The room still has screenings scheduled.']},
                'Room deletion failed',
            ) from exc
        logger.info('room_deleted id=%s', self.id)

    def contains(self, seat: Seat) -> bool:
        return 1 <= seat.row <= self.rows and 1 <= seat.seat <= self.seats_per_row

    def layout_dict(self) -> Dict[str, int]:
        return {'rows': self.rows, 'seatsPerRow': self.seats_per_row}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'rows': self.rows,
            'seatsPerRow': self.seats_per_row,
        }


# ===== CLASS BOOKING =====
class Booking:
    """
    Booking - a set of seats reserved against one screening
    Attributes:
        - id: int
        - screening_id: int
        - user_id: int or None
        - status: pending | confirmed | cancelled
        - seats: list of Seat
    """

    def __init__(self, screening_id: int, seats: List[Seat], status: str = 'confirmed',
                 user_id: int = None, created_at: str = None, id: int = None):
        self.id = id
        self.screening_id = screening_id
        self.user_id = user_id
        self.status = status
        self.seats = seats
        self.created_at = created_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Booking':
        return cls(
            id=row['id'],
            screening_id=row['screening_id'],
            user_id=row['user_id'],
            status=row['status'],
            seats=decode_seats(row['seats'], row['id']),
            created_at=row['created_at'],
        )

    @classmethod
    def for_screenings(cls, conn: sqlite3.Connection, screening_ids: List[int]) -> Dict[int, List['Booking']]:
        """Bookings grouped by screening id, in insertion order."""
        grouped: Dict[int, List[Booking]] = {sid: [] for sid in screening_ids}
        if not screening_ids:
            return grouped
        placeholders = ','.join('?' * len(screening_ids))
        rows = conn.execute(
            f'SELECT * FROM bookings WHERE screening_id IN ({placeholders}) ORDER BY id',
            screening_ids,
        ).fetchall()
        for row in rows:
            grouped[row['screening_id']].append(cls.from_row(row))
        return grouped

    @classmethod
    def find(cls, booking_id: int) -> 'Booking':
        conn = get_db()
        try:
            row = conn.execute('SELECT * FROM bookings WHERE id = ?', (booking_id,)).fetchone()
        except OverflowError:
            row = None
        finally:
            conn.close()
        if not row:
            raise NotFound('Booking', booking_id)
        return cls.from_row(row)

    @classmethod
    def for_user(cls, user_id: int) -> List['Booking']:
        conn = get_db()
        try:
            rows = conn.execute(
                'SELECT * FROM bookings WHERE user_id = ? ORDER BY created_at DESC, id DESC',
                (user_id,),
            ).fetchall()
        finally:
            conn.close()
        return [cls.from_row(row) for row in rows]

    @classmethod
    def create(cls, screening_id: int, seats: List[Seat], user_id: int = None,
               status: str = 'confirmed') -> 'Booking':
        """
        Reserve seats for a screening.

        The seats must lie inside the room, must not repeat, and must not
        overlap any non-cancelled booking of the same screening. The check and
        the insert share one IMMEDIATE transaction.
        """
        requested = [(s.row, s.seat) for s in seats]
        if len(set(requested)) != len(requested):
            raise ValidationError({'seats': ['The same seat was requested more than once.']})

        with transaction() as conn:
            try:
                row = conn.execute('''
                    SELECT r.* FROM screenings s
                    JOIN rooms r ON r.id = s.room_id
                    WHERE s.id = ?
                ''', (screening_id,)).fetchone()
            except OverflowError:
                row = None
            if not row:
                raise NotFound('Screening', screening_id)
            room = Room.from_row(row)

            outside = [s for s in seats if not room.contains(s)]
            if outside:
                raise ValidationError({
                    'seats': [f'Seat {s.row}-{s.seat} does not exist in this room.' for s in outside]
                })

            existing = cls.for_screenings(conn, [screening_id])[screening_id]
            taken = {(s.row, s.seat) for s in unavailable_seats(existing)}
            clashes = [s.to_dict() for s in seats if (s.row, s.seat) in taken]
            if clashes:
                raise SeatUnavailable(clashes)

            cursor = conn.execute(
                'INSERT INTO bookings (screening_id, user_id, status, seats) VALUES (?, ?, ?, ?)',
                (screening_id, user_id, status, encode_seats(seats)),
            )
            booking_id = cursor.lastrowid
        logger.info('booking_created id=%s screening_id=%s seats=%s', booking_id, screening_id, len(seats))
        return cls.find(booking_id)

    def cancel(self) -> 'Booking':
        with transaction() as conn:
            conn.execute('UPDATE bookings SET status = ? WHERE id = ?', (CANCELLED, self.id))
        self.status = CANCELLED
        logger.info('booking_cancelled id=%s', self.id)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'screening_id': self.screening_id,
            'user_id': self.user_id,
            'status': self.status,
            'seats': [s.to_dict() for s in self.seats],
            'created_at': self.created_at,
        }


# ===== CLASS SCREENING =====
class Screening:
    """
    Screening - a movie shown in a room at a date and time
    Attributes:
        - id: int
        - movie_id: int
        - room: Room
        - date: str (YYYY-MM-DD)
        - start_time: str (HH:MM)
        - week_number: int (ISO week)
        - week_day: int (ISO weekday)
        - bookings: list of Booking
    Methods:
        + create(): insert after the room conflict check
        + update(): partial update, recomputes week fields
        + delete(): remove, bookings cascade
    """

    _SELECT = '''
        SELECT s.*, m.title AS movie_title, m.duration AS movie_duration,
               r.id AS room_id, r.name AS room_name, r.seat_rows AS room_seat_rows,
               r.seats_per_row AS room_seats_per_row
        FROM screenings s
        JOIN rooms r ON r.id = s.room_id
        JOIN movies m ON m.id = s.movie_id
    '''

    def __init__(self, movie_id: int, room: Room, date: str, start_time: str,
                 week_number: int, week_day: int, movie_title: str = None,
                 movie_duration: int = None, bookings: List[Booking] = None, id: int = None):
        self.id = id
        self.movie_id = movie_id
        self.room = room
        self.date = date
        self.start_time = start_time
        self.week_number = week_number
        self.week_day = week_day
        self.movie_title = movie_title
        self.movie_duration = movie_duration
        self.bookings = bookings or []

    @property
    def room_id(self) -> int:
        return self.room.id

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Screening':
        return cls(
            id=row['id'],
            movie_id=row['movie_id'],
            room=Room.from_row(row, prefix='room_'),
            date=row['date'],
            start_time=row['start_time'],
            week_number=row['week_number'],
            week_day=row['week_day'],
            movie_title=row['movie_title'],
            movie_duration=row['movie_duration'],
        )

    @classmethod
    def _load(cls, conn: sqlite3.Connection, where: str = '', params: tuple = ()) -> List['Screening']:
        rows = conn.execute(
            f'{cls._SELECT} {where} ORDER BY s.date, s.start_time, s.id', params
        ).fetchall()
        screenings = [cls.from_row(row) for row in rows]
        bookings = Booking.for_screenings(conn, [s.id for s in screenings])
        for screening in screenings:
            screening.bookings = bookings[screening.id]
        return screenings

    @classmethod
    def all(cls) -> List['Screening']:
        conn = get_db()
        try:
            return cls._load(conn)
        finally:
            conn.close()

    @classmethod
    def for_movies(cls, conn: sqlite3.Connection, movie_ids: List[int],
                   week_number: Optional[int] = None) -> Dict[int, List['Screening']]:
        grouped: Dict[int, List[Screening]] = {mid: [] for mid in movie_ids}
        if not movie_ids:
            return grouped
        where = f"WHERE s.movie_id IN ({','.join('?' * len(movie_ids))})"
        params = list(movie_ids)
        if week_number is not None:
            where += ' AND s.week_number = ?'
            params.append(week_number)
        for screening in cls._load(conn, where, tuple(params)):
            grouped[screening.movie_id].append(screening)
        return grouped

    @classmethod
    def find(cls, screening_id: int) -> 'Screening':
        conn = get_db()
        try:
            found = cls._load(conn, 'WHERE s.id = ?', (screening_id,))
        except OverflowError:
            found = []
        finally:
            conn.close()
        if not found:
            raise NotFound('Screening', screening_id)
        return found[0]

    @classmethod
    def create(cls, movie_id: int, room_id: int, date: Date, start_time: str) -> 'Screening':
        week_number, week_day = week_fields(date)
        day = date.isoformat()
        with transaction() as conn:
            require_exists(conn, 'movies', movie_id, 'movie_id')
            require_exists(conn, 'rooms', room_id, 'room_id')
            ensure_no_conflict(conn, room_id, day, start_time)
            try:
                cursor = conn.execute('''
                    INSERT INTO screenings (movie_id, room_id, date, start_time, week_number, week_day)
                    VALUES (?, ?, ?, ?, ?, ?)
                ''', (movie_id, room_id, day, start_time, week_number, week_day))
            except sqlite3.IntegrityError as exc:
                raise SchedulingConflict(room_id, day, start_time) from exc
            screening_id = cursor.lastrowid
        logger.info('screening_created id=%s room_id=%s date=%s start_time=%s',
                    screening_id, room_id, day, start_time)
        return cls.find(screening_id)

    def update(self, changes: Dict[str, Any]) -> 'Screening':
        """Apply a partial update; only keys present in ``changes`` are written."""
        if not changes:
            return self
        fields = dict(changes)
        if 'date' in fields:
            fields['week_number'], fields['week_day'] = week_fields(fields['date'])
            fields['date'] = fields['date'].isoformat()

        room_id = fields.get('room_id', self.room_id)
        day = fields.get('date', self.date)
        start_time = fields.get('start_time', self.start_time)

        with transaction() as conn:
            if 'movie_id' in fields:
                require_exists(conn, 'movies', fields['movie_id'], 'movie_id')
            if 'room_id' in fields:
                require_exists(conn, 'rooms', fields['room_id'], 'room_id')
            if {'room_id', 'date', 'start_time'} & fields.keys():
                ensure_no_conflict(conn, room_id, day, start_time, exclude_id=self.id)
            assignments = ', '.join(f'{name} = ?' for name in fields)
            try:
                conn.execute(
                    f'UPDATE screenings SET {assignments} WHERE id = ?',
                    (*fields.values(), self.id),
                )
            except sqlite3.IntegrityError as exc:
                raise SchedulingConflict(room_id, day, start_time) from exc
        logger.info('screening_updated id=%s fields=%s', self.id, ','.join(sorted(fields)))
        return Screening.find(self.id)

    def delete(self) -> None:
        with transaction() as conn:
            conn.execute('DELETE FROM screenings WHERE id = ?', (self.id,))
        logger.info('screening_deleted id=%s', self.id)

    def unavailable_seats(self) -> List[Dict[str, int]]:
        return [s.to_dict() for s in unavailable_seats(self.bookings)]

    def to_movie_dict(self) -> Dict[str, Any]:
        """Shape used when the screening is nested inside a movie"""
        return {
            'id': self.id,
            'room': self.room.layout_dict(),
            'start_time': self.start_time,
            'date': self.date,
            'week_number': self.week_number,
            'week_day': self.week_day,
            'bookings': self.unavailable_seats(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'movie': {
                'id': self.movie_id,
                'title': self.movie_title,
                'duration': self.movie_duration,
            },
            'room': self.room.to_dict(),
            'date': self.date,
            'start_time': self.start_time,
            'week_number': self.week_number,
            'week_day': self.week_day,
            'bookings': self.unavailable_seats(),
        }


# ===== CLASS MOVIE =====
class Movie:
    """
    Movie - catalog entry
    Attributes:
        - id: int
        - title, description, director, genre: str
        - image_path: str (poster, relative to the upload folder)
        - duration: int (minutes)
        - release_year: int
        - screenings: list of Screening
    Methods:
        + all(): every movie, screenings optionally limited to one week
        + create() / update() / delete()
    """

    COLUMNS = ('title', 'description', 'image_path', 'duration', 'director', 'genre', 'release_year')

    def __init__(self, title: str, description: str = None, image_path: str = None,
                 duration: int = None, director: str = None, genre: str = None,
                 release_year: int = None, screenings: List[Screening] = None, id: int = None):
        self.id = id
        self.title = title
        self.description = description
        self.image_path = image_path
        self.duration = duration
        self.director = director
        self.genre = genre
        self.release_year = release_year
        self.screenings = screenings or []

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Movie':
        return cls(id=row['id'], **{name: row[name] for name in cls.COLUMNS})

    @classmethod
    def all(cls, week_number: Optional[int] = None) -> List['Movie']:
        """
        Every movie with its screenings attached.

        With ``week_number`` only that week's screenings are attached; movies
        with nothing in that week are still returned, with no screenings.
        """
        conn = get_db()
        try:
            movies = [cls.from_row(row) for row in conn.execute('SELECT * FROM movies ORDER BY id')]
            screenings = Screening.for_movies(conn, [m.id for m in movies], week_number)
        finally:
            conn.close()
        for movie in movies:
            movie.screenings = screenings[movie.id]
        return movies

    @classmethod
    def find(cls, movie_id: int) -> 'Movie':
        conn = get_db()
        try:
            row = conn.execute('SELECT * FROM movies WHERE id = ?', (movie_id,)).fetchone()
            if not row:
                raise NotFound('Movie', movie_id)
            movie = cls.from_row(row)
            movie.screenings = Screening.for_movies(conn, [movie.id])[movie.id]
        except OverflowError as exc:
            raise NotFound('Movie', movie_id) from exc
        finally:
            conn.close()
        return movie

    @classmethod
    def create(cls, fields: Dict[str, Any]) -> 'Movie':
        values = {name: fields.get(name) for name in cls.COLUMNS}
        with transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO movies ({', '.join(cls.COLUMNS)}) VALUES ({', '.join('?' * len(cls.COLUMNS))})",
                tuple(values.values()),
            )
            movie = cls(id=cursor.lastrowid, **values)
        logger.info('movie_created id=%s title=%r', movie.id, movie.title)
        return movie

    def update(self, changes: Dict[str, Any]) -> 'Movie':
        fields = {name: value for name, value in changes.items() if name in self.COLUMNS}
        if fields:
            assignments = ', '.join(f'{name} = ?' for name in fields)
            with transaction() as conn:
                conn.execute(
                    f'UPDATE movies SET {assignments} WHERE id = ?',
                    (*fields.values(), self.id),
                )
            for name, value in fields.items():
                setattr(self, name, value)
            logger.info('movie_updated id=%s fields=%s', self.id, ','.join(sorted(fields)))
        return self

    def delete(self) -> None:
        with transaction() as conn:
            conn.execute('DELETE FROM movies WHERE id = ?', (self.id,))
        logger.info('movie_deleted id=%s', self.id)

    def to_dict(self, with_screenings: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'image_path': self.image_path,
            'duration': self.duration,
            'director': self.director,
            'genre': self.genre,
            'release_year': self.release_year,
        }
        if with_screenings:
            data['screenings'] = [s.to_movie_dict() for s in self.screenings]
        return data


# ===== CLASS USER =====
class User:
    """
    User - an account that can sign in and book seats
    Attributes:
        - id: int
        - name: str
        - email: str
        - password: str (hash)
    """

    def __init__(self, name: str, email: str, password: str = None,
                 created_at: str = None, id: int = None):
        self.id = id
        self.name = name
        self.email = email
        self.password = password
        self.created_at = created_at

    @staticmethod
    def hash_password(password: str) -> str:
        return generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password) and check_password_hash(self.password, password)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'User':
        return cls(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            password=row['password'],
            created_at=row['created_at'],
        )

    @classmethod
    def find_by_email(cls, email: str) -> Optional['User']:
        conn = get_db()
        try:
            row = conn.execute('SELECT * FROM users WHERE email = ?', (email.strip().lower(),)).fetchone()
        finally:
            conn.close()
        return cls.from_row(row) if row else None

    @classmethod
    def register(cls, name: str, email: str, password: str) -> 'User':
        email = email.strip().lower()
        with transaction() as conn:
            existing = conn.execute('SELECT id FROM users WHERE email = ?', (email,)).fetchone()
            if existing:
                raise ValidationError({'email': ['The email has already been taken.']}, 'Registration failed')
            cursor = conn.execute(
                'INSERT INTO users (name, email, password) VALUES (?, ?, ?)',
                (name, email, cls.hash_password(password)),
            )
            user_id = cursor.lastrowid
        logger.info('user_registered id=%s', user_id)
        return cls.find_by_email(email)

    @classmethod
    def authenticate(cls, email: str, password: str) -> Optional['User']:
        user = cls.find_by_email(email)
        if user and user.check_password(password):
            return user
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'created_at': self.created_at,
        }


# ===== CLASS ACCESS TOKEN =====
class AccessToken:
    """
    AccessToken - bearer token issued at login

    The client receives ``"<id>|<secret>"`` once; only a SHA-256 digest of the
    secret is stored.
    """

    def __init__(self, user_id: int, name: str = 'auth-token', id: int = None):
        self.id = id
        self.user_id = user_id
        self.name = name

    @staticmethod
    def digest(secret: str) -> str:
        return hashlib.sha256(secret.encode()).hexdigest()

    @classmethod
    def issue(cls, user: User, name: str = 'auth-token') -> str:
        secret = secrets.token_hex(20)
        with transaction() as conn:
            cursor = conn.execute(
                'INSERT INTO access_tokens (user_id, name, token_hash) VALUES (?, ?, ?)',
                (user.id, name, cls.digest(secret)),
            )
            token_id = cursor.lastrowid
        return f'{token_id}|{secret}'

    @classmethod
    def resolve(cls, plain: str) -> Optional[Tuple[User, 'AccessToken']]:
        """Find the user a plain text token belongs to"""
        token_id, sep, secret = plain.partition('|')
        if not sep or not secret or not (token_id.isascii() and token_id.isdigit()):
            return None
        conn = get_db()
        try:
            row = conn.execute('''
                SELECT t.id AS token_id, t.name AS token_name, t.token_hash, u.*
                FROM access_tokens t
                JOIN users u ON u.id = t.user_id
                WHERE t.id = ?
            ''', (int(token_id),)).fetchone()
        except (ValueError, OverflowError):
            return None
        finally:
            conn.close()
        if not row or not secrets.compare_digest(row['token_hash'], cls.digest(secret)):
            return None
        user = User.from_row(row)
        return user, cls(id=row['token_id'], user_id=user.id, name=row['token_name'])

    def revoke(self) -> None:
        with transaction() as conn:
            conn.execute('DELETE FROM access_tokens WHERE id = ?', (self.id,))
        logger.info('token_revoked id=%s user_id=%s', self.id, self.user_id)
