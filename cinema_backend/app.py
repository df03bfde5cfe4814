"""
Cinema backend - Flask JSON API

Movies, rooms, screenings, bookings and token sessions over SQLite.
"""

import logging

import click
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from .auth import AuthContext, auth_required
from .config import load_config
from .errors import (
    BadRequest, CinemaError, InternalFailure, InvalidCredentials, NotFound, ValidationError,
)
from .logging_utils import get_request_id, new_request_id, set_request_id, setup_logging
from .models import AccessToken, Booking, Movie, Room, Screening, User, get_db
from .schemas import (
    BookingCreate, LoginRequest, MovieCreate, MovieUpdate, RegisterRequest, RoomCreate,
    ScreeningCreate, ScreeningUpdate, validate,
)
from .storage import get_storage

config = load_config()
setup_logging(config.log_level)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.update(config.as_flask_config())
CORS(app, resources={r'/*': {'origins': config.cors_origins}})


# ===== REQUEST HOOKS =====
@app.before_request
def assign_request_id():
    set_request_id(request.headers.get('X-Request-ID') or new_request_id())


@app.after_request
def expose_request_id(response):
    response.headers['X-Request-ID'] = get_request_id()
    return response


# ===== ERROR HANDLERS =====
@app.errorhandler(CinemaError)
def handle_cinema_error(error: CinemaError):
    if error.status_code >= 500:
        logger.error('request_failed path=%s error=%s', request.path, error)
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(RequestEntityTooLarge)
def handle_oversized_upload(error: RequestEntityTooLarge):
    # only poster uploads carry bodies this large
    if not request.path.startswith('/movies'):
        return jsonify({'status': 'error', 'message': error.description}), error.code
    logger.info('upload_rejected path=%s content_length=%s', request.path, request.content_length)
    failure = ValidationError(
        {'image': [f"The image may not be greater than {app.config['MAX_IMAGE_KB']} kilobytes."]},
        'Movie upload rejected due to validation errors',
    )
    return jsonify(failure.to_dict()), failure.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    if isinstance(error, HTTPException):
        return jsonify({'status': 'error', 'message': error.description}), error.code
    logger.exception('unhandled_error path=%s', request.path)
    failure = InternalFailure()
    return jsonify(failure.to_dict()), failure.status_code


# ===== HELPERS =====
def request_data() -> dict:
    """Form fields and JSON body merged into one mapping"""
    data = request.form.to_dict()
    if request.is_json:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise BadRequest('Request body must be a JSON object')
        data.update(body)
    return data


def week_number_arg(required: bool = False):
    raw = request.args.get('week_number', '').strip()
    if not raw:
        if required:
            raise BadRequest('Week number is required')
        return None
    try:
        value = int(raw)
    except ValueError:
        raise BadRequest('Week number must be an integer')
    if not 1 <= value <= 53:
        raise BadRequest('Week number must be between 1 and 53')
    return value


def changes_of(model) -> dict:
    return model.model_dump(exclude_unset=True, exclude_none=True)


def validate_with_image(schema, data, image, image_required: bool, message: str):
    """Validate fields and the poster together so both sets of errors are reported"""
    errors = {}
    payload = None
    try:
        payload = validate(schema, data, message)
    except ValidationError as exc:
        errors.update(exc.errors)
    image_errors = get_storage().check(image, required=image_required)
    if image_errors:
        errors['image'] = image_errors
    if errors:
        raise ValidationError(errors, message)
    return payload


# ===== MOVIE ROUTES =====
@app.route('/movies', methods=['GET'])
def list_movies():
    movies = Movie.all(week_number=week_number_arg())
    return jsonify([m.to_dict() for m in movies])


@app.route('/movies/by-week', methods=['GET'])
def movies_by_week():
    movies = Movie.all(week_number=week_number_arg(required=True))
    return jsonify([m.to_dict() for m in movies])


@app.route('/movies', methods=['POST'])
@auth_required
def create_movie(auth: AuthContext):
    image = request.files.get('image')
    payload = validate_with_image(
        MovieCreate, request_data(), image, True,
        'Movie addition failed due to validation errors',
    )

    storage = get_storage()
    image_path = None
    try:
        image_path = storage.save(image)
        movie = Movie.create({**payload.model_dump(), 'image_path': image_path})
    except CinemaError:
        storage.delete(image_path)
        raise
    except Exception as exc:
        storage.delete(image_path)
        logger.exception('movie_create_failed user_id=%s', auth.user.id)
        raise InternalFailure('Failed to add movie. Please try again later.') from exc

    return jsonify({
        'status': 'success',
        'message': 'Movie added successfully!',
        'data': movie.to_dict(),
    }), 201


@app.route('/movies/<int:movie_id>', methods=['GET'])
def show_movie(movie_id):
    return jsonify(Movie.find(movie_id).to_dict())


@app.route('/movies/<int:movie_id>', methods=['PATCH', 'PUT'])
@auth_required
def update_movie(movie_id, auth: AuthContext):
    movie = Movie.find(movie_id)
    image = request.files.get('image')
    payload = validate_with_image(
        MovieUpdate, request_data(), image, False,
        'Movie update failed due to validation errors',
    )
    changes = changes_of(payload)

    storage = get_storage()
    old_image = movie.image_path
    new_image = None
    if image is not None and image.filename:
        new_image = storage.save(image)
        changes['image_path'] = new_image
    try:
        movie.update(changes)
    except Exception:
        storage.delete(new_image)
        raise
    if new_image:
        storage.delete(old_image)

    return jsonify({'data': movie.to_dict()})


@app.route('/movies/<int:movie_id>', methods=['DELETE'])
@auth_required
def delete_movie(movie_id, auth: AuthContext):
    movie = Movie.find(movie_id)
    movie.delete()
    get_storage().delete(movie.image_path)
    return '', 204


# ===== SCREENING ROUTES =====
@app.route('/screenings', methods=['GET'])
def list_screenings():
    return jsonify({'data': [s.to_dict() for s in Screening.all()]})


@app.route('/screenings', methods=['POST'])
@auth_required
def create_screening(auth: AuthContext):
    payload = validate(ScreeningCreate, request_data(), 'Screening addition failed due to validation errors')
    try:
        screening = Screening.create(
            movie_id=payload.movie_id,
            room_id=payload.room_id,
            date=payload.date,
            start_time=payload.start_time,
        )
    except CinemaError:
        raise
    except Exception as exc:
        logger.exception('screening_create_failed user_id=%s', auth.user.id)
        raise InternalFailure('Failed to add screening. Please try again later.') from exc

    return jsonify({
        'status': 'success',
        'message': 'Screening added successfully!',
        'data': screening.to_dict(),
    }), 201


@app.route('/screenings/<int:screening_id>', methods=['GET'])
def show_screening(screening_id):
    return jsonify({'data': Screening.find(screening_id).to_dict()})


@app.route('/screenings/<int:screening_id>', methods=['PATCH', 'PUT'])
@auth_required
def update_screening(screening_id, auth: AuthContext):
    screening = Screening.find(screening_id)
    payload = validate(ScreeningUpdate, request_data(), 'Screening update failed due to validation errors')
    screening = screening.update(changes_of(payload))
    return jsonify({'data': screening.to_dict()})


@app.route('/screenings/<int:screening_id>', methods=['DELETE'])
@auth_required
def delete_screening(screening_id, auth: AuthContext):
    Screening.find(screening_id).delete()
    return '', 204


# ===== ROOM ROUTES =====
@app.route('/rooms', methods=['GET'])
def list_rooms():
    return jsonify({'data': [r.to_dict() for r in Room.all()]})


@app.route('/rooms', methods=['POST'])
@auth_required
def create_room(auth: AuthContext):
    payload = validate(RoomCreate, request_data(), 'Room addition failed due to validation errors')
    room = Room.create(payload.name, payload.rows, payload.seats_per_row)
    return jsonify({
        'status': 'success',
        'message': 'Room added successfully!',
        'data': room.to_dict(),
    }), 201


@app.route('/rooms/<int:room_id>', methods=['GET'])
def show_room(room_id):
    return jsonify({'data': Room.find(room_id).to_dict()})


@app.route('/rooms/<int:room_id>', methods=['DELETE'])
@auth_required
def delete_room(room_id, auth: AuthContext):
    Room.find(room_id).delete()
    return '', 204


# ===== BOOKING ROUTES =====
@app.route('/screenings/<int:screening_id>/bookings', methods=['POST'])
@auth_required
def create_booking(screening_id, auth: AuthContext):
    payload = validate(BookingCreate, request_data(), 'Booking failed due to validation errors')
    booking = Booking.create(screening_id, payload.seats, user_id=auth.user.id)
    return jsonify({
        'status': 'success',
        'message': 'Booking created successfully!',
        'data': booking.to_dict(),
    }), 201


@app.route('/bookings', methods=['GET'])
@auth_required
def my_bookings(auth: AuthContext):
    return jsonify({'data': [b.to_dict() for b in Booking.for_user(auth.user.id)]})


def own_booking(booking_id: int, auth: AuthContext) -> Booking:
    booking = Booking.find(booking_id)
    if booking.user_id != auth.user.id:
        raise NotFound('Booking', booking_id)
    return booking


@app.route('/bookings/<int:booking_id>', methods=['GET'])
@auth_required
def show_booking(booking_id, auth: AuthContext):
    return jsonify({'data': own_booking(booking_id, auth).to_dict()})


@app.route('/bookings/<int:booking_id>/cancel', methods=['POST'])
@auth_required
def cancel_booking(booking_id, auth: AuthContext):
    booking = own_booking(booking_id, auth).cancel()
    return jsonify({
        'status': 'success',
        'message': 'Booking cancelled',
        'data': booking.to_dict(),
    })


# ===== AUTH ROUTES =====
@app.route('/register', methods=['POST'])
def register():
    payload = validate(RegisterRequest, request_data(), 'Registration failed due to validation errors')
    user = User.register(payload.name, payload.email, payload.password)
    token = AccessToken.issue(user)
    return jsonify({
        'status': 'success',
        'message': 'Registration successful',
        'data': {'user': user.to_dict(), 'token': token},
    }), 201


@app.route('/session', methods=['POST'])
def login():
    try:
        payload = validate(LoginRequest, request_data())
    except ValidationError as exc:
        raise InvalidCredentials() from exc

    user = User.authenticate(payload.email, payload.password)
    if not user:
        logger.info('login_failed email=%s', payload.email)
        raise InvalidCredentials()

    token = AccessToken.issue(user)
    logger.info('login_succeeded user_id=%s', user.id)
    return jsonify({
        'status': 'success',
        'message': 'Login successful',
        'data': {'user': user.to_dict(), 'token': token},
    })


@app.route('/session', methods=['DELETE'])
@auth_required
def logout(auth: AuthContext):
    auth.token.revoke()
    return jsonify({'status': 'success', 'message': 'Logged out successfully'})


# ===== UPLOADS =====
@app.route('/uploads/<path:filename>', methods=['GET'])
def uploaded_file(filename):
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)


# ===== INIT DATABASE =====
SCHEMA = '''
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS access_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        name TEXT NOT NULL DEFAULT 'auth-token',
        token_hash TEXT UNIQUE NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS rooms (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        seat_rows INTEGER NOT NULL CHECK (seat_rows > 0),
        seats_per_row INTEGER NOT NULL CHECK (seats_per_row > 0)
    );

    CREATE TABLE IF NOT EXISTS movies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        description TEXT,
        image_path TEXT,
        duration INTEGER NOT NULL CHECK (duration >= 1),
        director TEXT,
        genre TEXT,
        release_year INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS screenings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        movie_id INTEGER NOT NULL,
        room_id INTEGER NOT NULL,
        date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        week_number INTEGER NOT NULL,
        week_day INTEGER NOT NULL,
        FOREIGN KEY (movie_id) REFERENCES movies(id) ON DELETE CASCADE,
        FOREIGN KEY (room_id) REFERENCES rooms(id) ON DELETE RESTRICT,
        UNIQUE (room_id, date, start_time)
    );

    CREATE INDEX IF NOT EXISTS idx_screenings_week ON screenings (week_number);

    CREATE TABLE IF NOT EXISTS bookings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        screening_id INTEGER NOT NULL,
        user_id INTEGER,
        status TEXT NOT NULL DEFAULT 'confirmed'
            CHECK (status IN ('pending', 'confirmed', 'cancelled')),
        seats TEXT NOT NULL DEFAULT '[]',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (screening_id) REFERENCES screenings(id) ON DELETE CASCADE,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE SET NULL
    );

    CREATE INDEX IF NOT EXISTS idx_bookings_screening ON bookings (screening_id);
'''


def init_db(seed: bool = False):
    conn = get_db()
    conn.executescript(SCHEMA)

    if seed:
        users_count = conn.execute('SELECT COUNT(*) FROM users').fetchone()[0]
        rooms_count = conn.execute('SELECT COUNT(*) FROM rooms').fetchone()[0]
        if users_count == 0 and rooms_count == 0:
            conn.execute(
                'INSERT INTO users (name, email, password) VALUES (?, ?, ?)',
                ('Administrator', 'admin@cinema.test', User.hash_password('admin12345')),
            )
            rooms = [('Room 1', 8, 12), ('Room 2', 6, 10), ('Room 3', 10, 14)]
            conn.executemany(
                'INSERT INTO rooms (name, seat_rows, seats_per_row) VALUES (?, ?, ?)', rooms
            )
            conn.commit()
            logger.info('database_seeded users=1 rooms=%s', len(rooms))

    conn.close()
    logger.info('database_ready path=%s', app.config['DATABASE'])


@app.cli.command('init-db')
@click.option('--seed', is_flag=True, help='Insert an admin account and sample rooms.')
def init_db_command(seed):
    """Create the tables if they do not exist."""
    init_db(seed=seed or app.config.get('SEED_DATA', False))
    click.echo('Initialized the database.')


# ===== RUN =====
def serve(host: str = '0.0.0.0', port: int = 3000):
    with app.app_context():
        init_db(seed=app.config.get('SEED_DATA', False))
    app.run(host=host, port=port, debug=True)


if __name__ == '__main__':
    serve()
