"""Общие типы колонок."""
from sqlalchemy import BigInteger, Integer

# BIGINT в PostgreSQL; в SQLite автоинкремент работает только у INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")
