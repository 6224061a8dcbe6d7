#!/usr/bin/env python3
"""List the tables and indexes of the configured database."""
from sqlalchemy import create_engine, inspect

from common.config import get_settings


def check_indexes():
    engine = create_engine(get_settings().database_url)
    inspector = inspect(engine)
    for table in inspector.get_table_names():
        print(f"Table: {table}")
        for index in inspector.get_indexes(table):
            unique = " (unique)" if index.get("unique") else ""
            print(f"  {index['name']}: {', '.join(index['column_names'])}{unique}")


if __name__ == "__main__":
    check_indexes()
