"""Database layer: engine, ORM models and the SQL-backed stores."""
