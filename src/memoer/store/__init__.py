"""Memory store — one SQLite file, five tables, no ORM.

Layout:
    users               # id (uuid), name (unique; "default-user" is the singleton)
    apps                # name (unique, normalized), owner_id -> users.id
    memories            # id (uuid), content, app_name -> apps.name,
                        # user_name -> users.name, created_at (UTC ISO-8601)
    categories          # name (unique)
    memory_categories   # memory_id -> memories.id, category_id -> categories.id

The schema version is tracked in ``PRAGMA user_version`` (see schema.py).
"""
