"""Create the database tables and insert the built-in tenants.

Usage: `python -m infra24.tools.seed` or the `infra24-seed` console script.
"""

from infra24.app.db.core import create_all_tables, get_session_factory
from infra24.app.tenancy.core import seed_default_tenants


def run() -> None:
    print("Creating database tables...")
    create_all_tables()
    db = get_session_factory()()
    try:
        created = seed_default_tenants(db)
    finally:
        db.close()
    if created:
        print(f"Seeded tenants: {', '.join(org.slug for org in created)}")
    else:
        print("All built-in tenants already exist")


if __name__ == "__main__":
    run()
