"""Database layer: declarative base, column types, engine and ORM guards."""
