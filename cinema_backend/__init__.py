"""Cinema booking backend: movies, rooms, screenings and bookings over a JSON API."""
