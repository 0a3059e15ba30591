from app import create_app
from extensions import db
from models import User, Restaurant

ADMIN = {
    'name': 'Admin User',
    'email': 'admin@example.com',
    'password': 'admin123',
    'role': 'admin',
    'phone': '123-456-7890',
    'address': '123 Admin St, Admin City',
}

DEMO_USERS = [
    {
        'name': 'Regular Donor',
        'email': 'donor@example.com',
        'password': 'donor123',
        'role': 'donor',
        'phone': '123-456-7891',
        'address': '456 User Ave, User City',
    },
    {
        'name': 'Charity Organization',
        'email': 'charity@example.com',
        'password': 'charity123',
        'role': 'charity',
        'phone': '123-456-7892',
        'address': '789 Charity Blvd, Charity City',
        'organization_name': 'Food Rescue Charity',
        'organization_type': 'charity',
    },
    {
        'name': 'Volunteer User',
        'email': 'volunteer@example.com',
        'password': 'volunteer123',
        'role': 'volunteer',
        'phone': '123-456-7893',
        'address': '321 Volunteer Rd, Volunteer City',
    },
    {
        'name': 'Restaurant Owner',
        'email': 'restaurant@example.com',
        'password': 'restaurant123',
        'role': 'donor',
        'phone': '123-456-7894',
        'address': '654 Restaurant Ln, Restaurant City',
        'organization_name': 'Tasty Bites Restaurant',
        'organization_type': 'restaurant',
    },
]


def ensure_user(profile):
    """Create the user unless the email is already taken. Returns (user, created)."""
    existing = User.query.filter_by(email=profile['email']).first()
    if existing:
        return existing, False

    fields = {k: v for k, v in profile.items() if k != 'password'}
    user = User(verification_status='verified', **fields)
    user.set_password(profile['password'])
    db.session.add(user)
    db.session.commit()
    return user, True


def seed_admin():
    user, created = ensure_user(ADMIN)
    if created:
        print(f"Admin created: {user.email}")
    else:
        print("Admin user already exists. Skipping.")
    return user


def seed_demo_users():
    for profile in DEMO_USERS:
        user, created = ensure_user(profile)
        print(f"{'Created' if created else 'Exists '} {user.role:<10} {user.email}")

        # The restaurant owner also gets an approved business profile
        if profile.get('organization_type') == 'restaurant' and not user.restaurant:
            db.session.add(Restaurant(
                user_id=user.id,
                business_type='restaurant',
                business_name=profile['organization_name'],
                contact_name=profile['name'],
                email=profile['email'],
                phone=profile['phone'],
                address=profile['address'],
                pickup_time='evening',
                frequency='daily',
                status='approved',
            ))
            db.session.commit()


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
        seed_admin()
        seed_demo_users()
