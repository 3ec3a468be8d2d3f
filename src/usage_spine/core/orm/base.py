"""Declarative base and type-map for all usage-spine ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.
"""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Float, Integer, Text
from sqlalchemy.orm import DeclarativeBase


class UsageBase(DeclarativeBase):
    """Shared declarative base for every usage-spine table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``float`` → ``Float``   (prices and costs; SQLite has no native DECIMAL)
    * ``datetime.datetime`` → ``DateTime`` (naive UTC)
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        datetime.datetime: DateTime,
    }
