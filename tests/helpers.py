import io
import os
import tempfile
import unittest

from cinema_backend.app import app, init_db
from cinema_backend.models import Room

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64
GIF_BYTES = b'GIF89a' + b'\x00' * 64


def movie_form(**overrides):
    form = {
        'title': 'Arrival',
        'description': 'Linguist meets heptapods.',
        'duration': '116',
        'director': 'Denis Villeneuve',
        'genre': 'Sci-Fi',
        'release_year': '2016',
        'image': (io.BytesIO(PNG_BYTES), 'arrival.png'),
    }
    form.update(overrides)
    return form


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.upload_folder = os.path.join(self._tmp.name, 'uploads')
        app.config.update(
            TESTING=True,
            DATABASE=os.path.join(self._tmp.name, 'cinema-test.db'),
            UPLOAD_FOLDER=self.upload_folder,
        )
        with app.app_context():
            init_db()
        self.client = app.test_client()
        self.token = self.register('Ada Lovelace', 'ada@example.com')

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def register(self, name: str, email: str, password: str = 'correct-horse') -> str:
        resp = self.client.post('/register', json={'name': name, 'email': email, 'password': password})
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()['data']['token']

    def auth(self, token: str = None) -> dict:
        return {'Authorization': f'Bearer {token or self.token}'}

    def make_room(self, rows: int = 5, seats_per_row: int = 8, name: str = 'Room 1') -> int:
        with app.app_context():
            return Room.create(name, rows, seats_per_row).id

    def make_movie(self, **overrides) -> dict:
        resp = self.client.post(
            '/movies',
            data=movie_form(**overrides),
            headers=self.auth(),
            content_type='multipart/form-data',
        )
        self.assertEqual(resp.status_code, 201, resp.get_json())
        return resp.get_json()['data']

    def make_screening(self, movie_id: int, room_id: int, date: str, start_time: str = '14:00'):
        return self.client.post(
            '/screenings',
            json={'movie_id': movie_id, 'room_id': room_id, 'date': date, 'start_time': start_time},
            headers=self.auth(),
        )
