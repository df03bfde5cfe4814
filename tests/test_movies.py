import io
import os
import unittest
from datetime import date
from unittest import mock

from helpers import GIF_BYTES, PNG_BYTES, ApiTestCase, app, movie_form


class MovieWriteTests(ApiTestCase):
    def test_create_then_read_back(self) -> None:
        created = self.make_movie()
        resp = self.client.get(f"/movies/{created['id']}")
        self.assertEqual(resp.status_code, 200)
        movie = resp.get_json()

        self.assertEqual(movie['title'], 'Arrival')
        self.assertEqual(movie['description'], 'Linguist meets heptapods.')
        self.assertEqual(movie['duration'], 116)
        self.assertEqual(movie['director'], 'Denis Villeneuve')
        self.assertEqual(movie['genre'], 'Sci-Fi')
        self.assertEqual(movie['release_year'], 2016)
        self.assertEqual(movie['screenings'], [])
        self.assertTrue(movie['image_path'].startswith('movies/'))
        self.assertTrue(os.path.isfile(os.path.join(self.upload_folder, movie['image_path'])))

    def test_create_response_envelope(self) -> None:
        resp = self.client.post('/movies', data=movie_form(), headers=self.auth(),
                                content_type='multipart/form-data')
        body = resp.get_json()
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(body['status'], 'success')
        self.assertEqual(body['message'], 'Movie added successfully!')

    def test_release_year_lower_bound(self) -> None:
        resp = self.client.post('/movies', data=movie_form(release_year='1899'), headers=self.auth(),
                                content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        body = resp.get_json()
        self.assertEqual(body['status'], 'error')
        self.assertIn('release_year', body['errors'])

    def test_release_year_next_year_is_accepted(self) -> None:
        movie = self.make_movie(release_year=str(date.today().year + 1))
        self.assertEqual(movie['release_year'], date.today().year + 1)

    def test_release_year_two_years_ahead_is_rejected(self) -> None:
        resp = self.client.post('/movies', data=movie_form(release_year=str(date.today().year + 2)),
                                headers=self.auth(), content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        self.assertIn('release_year', resp.get_json()['errors'])

    def test_missing_fields_and_image_are_reported_together(self) -> None:
        form = movie_form(duration='0')
        del form['image']
        del form['title']
        resp = self.client.post('/movies', data=form, headers=self.auth(),
                                content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        errors = resp.get_json()['errors']
        self.assertIn('title', errors)
        self.assertIn('duration', errors)
        self.assertIn('image', errors)

    def test_non_image_upload_is_rejected(self) -> None:
        form = movie_form(image=(io.BytesIO(b'plain text, not a picture'), 'poster.txt'))
        resp = self.client.post('/movies', data=form, headers=self.auth(),
                                content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(len(resp.get_json()['errors']['image']), 2)

    def test_create_requires_authentication(self) -> None:
        resp = self.client.post('/movies', data=movie_form(), content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json(), {
            'message': 'You need to be authenticated to access this route',
            'status': 401,
        })

    def test_unexpected_failure_is_generic_and_cleans_up_poster(self) -> None:
        with mock.patch('cinema_backend.app.Movie.create', side_effect=RuntimeError('disk I/O at /var/db')):
            resp = self.client.post('/movies', data=movie_form(), headers=self.auth(),
                                    content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 500)
        body = resp.get_json()
        self.assertEqual(body['message'], 'Failed to add movie. Please try again later.')
        self.assertNotIn('/var/db', resp.get_data(as_text=True))
        posters = os.path.join(self.upload_folder, 'movies')
        self.assertEqual(os.listdir(posters) if os.path.isdir(posters) else [], [])

    def test_partial_update_keeps_other_fields(self) -> None:
        movie = self.make_movie()
        resp = self.client.patch(f"/movies/{movie['id']}", json={'title': 'Arrival (2016)'},
                                 headers=self.auth())
        self.assertEqual(resp.status_code, 200)
        updated = resp.get_json()['data']
        self.assertEqual(updated['title'], 'Arrival (2016)')
        self.assertEqual(updated['director'], 'Denis Villeneuve')
        self.assertEqual(updated['image_path'], movie['image_path'])

    def test_update_validates_fields(self) -> None:
        movie = self.make_movie()
        resp = self.client.patch(f"/movies/{movie['id']}", json={'duration': 0}, headers=self.auth())
        self.assertEqual(resp.status_code, 422)
        self.assertIn('duration', resp.get_json()['errors'])

    def test_replacing_image_deletes_old_blob(self) -> None:
        movie = self.make_movie()
        old_path = os.path.join(self.upload_folder, movie['image_path'])
        resp = self.client.put(
            f"/movies/{movie['id']}",
            data={'image': (io.BytesIO(GIF_BYTES), 'new.gif')},
            headers=self.auth(),
            content_type='multipart/form-data',
        )
        self.assertEqual(resp.status_code, 200)
        new_image = resp.get_json()['data']['image_path']
        self.assertNotEqual(new_image, movie['image_path'])
        self.assertTrue(new_image.endswith('.gif'))
        self.assertFalse(os.path.exists(old_path))
        self.assertTrue(os.path.isfile(os.path.join(self.upload_folder, new_image)))

    def test_failed_update_keeps_old_image_and_drops_new_one(self) -> None:
        movie = self.make_movie()
        posters = os.path.join(self.upload_folder, 'movies')
        with mock.patch('cinema_backend.app.Movie.update', side_effect=RuntimeError('database is locked')):
            resp = self.client.put(
                f"/movies/{movie['id']}",
                data={'image': (io.BytesIO(GIF_BYTES), 'new.gif')},
                headers=self.auth(),
                content_type='multipart/form-data',
            )
        self.assertEqual(resp.status_code, 500)
        self.assertNotIn('database is locked', resp.get_data(as_text=True))
        self.assertTrue(os.path.isfile(os.path.join(self.upload_folder, movie['image_path'])))
        self.assertEqual(os.listdir(posters), [os.path.basename(movie['image_path'])])
        self.assertEqual(self.client.get(f"/movies/{movie['id']}").get_json()['image_path'], movie['image_path'])

    def test_oversized_upload_is_an_image_error(self) -> None:
        image = PNG_BYTES + b'\x00' * app.config['MAX_CONTENT_LENGTH']
        resp = self.client.post('/movies', data=movie_form(image=(io.BytesIO(image), 'huge.png')),
                                headers=self.auth(), content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        self.assertIn('image', resp.get_json()['errors'])

    def test_out_of_range_integers_are_validation_errors(self) -> None:
        resp = self.client.post('/movies', data=movie_form(duration=str(10 ** 20)), headers=self.auth(),
                                content_type='multipart/form-data')
        self.assertEqual(resp.status_code, 422)
        self.assertIn('duration', resp.get_json()['errors'])
        posters = os.path.join(self.upload_folder, 'movies')
        self.assertEqual(os.listdir(posters) if os.path.isdir(posters) else [], [])

    def test_delete_removes_poster_blob(self) -> None:
        movie = self.make_movie()
        poster = os.path.join(self.upload_folder, movie['image_path'])
        self.assertTrue(os.path.isfile(poster))

        resp = self.client.delete(f"/movies/{movie['id']}", headers=self.auth())
        self.assertEqual(resp.status_code, 204)
        self.assertFalse(os.path.exists(poster))
        self.assertEqual(self.client.get(f"/movies/{movie['id']}").status_code, 404)

    def test_delete_cascades_to_screenings(self) -> None:
        movie = self.make_movie()
        room_id = self.make_room()
        screening = self.make_screening(movie['id'], room_id, '2026-02-02').get_json()['data']

        self.client.delete(f"/movies/{movie['id']}", headers=self.auth())
        self.assertEqual(self.client.get(f"/screenings/{screening['id']}").status_code, 404)

    def test_unknown_movie(self) -> None:
        resp = self.client.get('/movies/999')
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['status'], 'error')

    def test_id_beyond_integer_range(self) -> None:
        resp = self.client.get(f'/movies/{10 ** 20}')
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()['status'], 'error')
        self.assertEqual(self.client.delete(f'/movies/{10 ** 20}', headers=self.auth()).status_code, 404)


class MovieListTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.room_id = self.make_room(rows=4, seats_per_row=6)
        self.week6 = self.make_movie(title='Week Six Only')
        self.both = self.make_movie(title='Both Weeks')
        # 2026-01-26 is Monday of ISO week 5, 2026-02-02 Monday of week 6
        self.assertEqual(self.make_screening(self.week6['id'], self.room_id, '2026-02-02', '18:00').status_code, 201)
        self.assertEqual(self.make_screening(self.both['id'], self.room_id, '2026-01-26', '18:00').status_code, 201)
        self.assertEqual(self.make_screening(self.both['id'], self.room_id, '2026-02-03', '20:00').status_code, 201)

    def by_title(self, movies):
        return {m['title']: m for m in movies}

    def test_unfiltered_list_has_all_screenings(self) -> None:
        movies = self.by_title(self.client.get('/movies').get_json())
        self.assertEqual(len(movies['Week Six Only']['screenings']), 1)
        self.assertEqual(len(movies['Both Weeks']['screenings']), 2)

    def test_week_filter_keeps_parent_and_filters_children(self) -> None:
        movies = self.by_title(self.client.get('/movies?week_number=5').get_json())
        self.assertEqual(set(movies), {'Week Six Only', 'Both Weeks'})
        self.assertEqual(movies['Week Six Only']['screenings'], [])
        screenings = movies['Both Weeks']['screenings']
        self.assertEqual(len(screenings), 1)
        self.assertEqual(screenings[0]['week_number'], 5)
        self.assertEqual(screenings[0]['week_day'], 1)

    def test_screening_shape_inside_movie(self) -> None:
        movies = self.by_title(self.client.get('/movies?week_number=6').get_json())
        screening = movies['Week Six Only']['screenings'][0]
        self.assertEqual(screening['room'], {'rows': 4, 'seatsPerRow': 6})
        self.assertEqual(screening['start_time'], '18:00')
        self.assertEqual(screening['date'], '2026-02-02')
        self.assertEqual(screening['bookings'], [])

    def test_by_week_requires_week_number(self) -> None:
        resp = self.client.get('/movies/by-week')
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {'status': 'error', 'message': 'Week number is required'})

    def test_by_week_matches_filtered_list(self) -> None:
        by_week = self.client.get('/movies/by-week?week_number=6').get_json()
        listed = self.client.get('/movies?week_number=6').get_json()
        self.assertEqual(by_week, listed)

    def test_invalid_week_number(self) -> None:
        self.assertEqual(self.client.get('/movies?week_number=abc').status_code, 400)
        self.assertEqual(self.client.get('/movies?week_number=54').status_code, 400)


if __name__ == "__main__":
    unittest.main()
