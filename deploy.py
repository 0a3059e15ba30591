import os
from app import create_app
from extensions import db
from flask_migrate import upgrade
from seed import seed_admin

app = create_app()


def deploy():
    """
    PRODUCTION DEPLOY SCRIPT
    1. Upgrades DB Schema (Safe migration)
    2. Seeds Admin (Only if missing)
    """
    with app.app_context():
        # --- PART 1: RUN MIGRATIONS (Instead of drop_all) ---
        print("1. Applying database migrations...")
        if os.path.isdir(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')):
            # This is the Python equivalent of running 'flask db upgrade'
            upgrade()
        else:
            # No migration history yet: create the tables straight from the models
            db.create_all()
        print("Database schema is up to date.")

        # --- PART 2: SEED ADMIN (Conditional) ---
        print("2. Checking admin user...")
        seed_admin()


if __name__ == "__main__":
    deploy()
