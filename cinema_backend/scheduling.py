"""
Room double-booking check for screenings.

Two screenings conflict when they share room, date and start time. Callers
run the check on the same connection, inside the same IMMEDIATE transaction,
as the insert or update it guards.
"""

import logging
import sqlite3
from typing import Optional

from .errors import SchedulingConflict

logger = logging.getLogger(__name__)


def find_conflict(conn: sqlite3.Connection, room_id: int, date: str, start_time: str,
                  exclude_id: Optional[int] = None) -> Optional[int]:
    """Return the id of another screening holding the slot, or None"""
    query = 'SELECT id FROM screenings WHERE room_id = ? AND date = ? AND start_time = ?'
    params = [room_id, date, start_time]
    if exclude_id is not None:
        query += ' AND id != ?'
        params.append(exclude_id)
    row = conn.execute(query + ' LIMIT 1', params).fetchone()
    return row[0] if row else None


def ensure_no_conflict(conn: sqlite3.Connection, room_id: int, date: str, start_time: str,
                       exclude_id: Optional[int] = None) -> None:
    conflicting = find_conflict(conn, room_id, date, start_time, exclude_id)
    if conflicting is not None:
        logger.info('screening_conflict room_id=%s date=%s start_time=%s existing=%s',
                    room_id, date, start_time, conflicting)
        raise SchedulingConflict(room_id, date, start_time)
