from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timezone
from extensions import db

ROLES = ('admin', 'donor', 'charity', 'volunteer')
SELF_SERVICE_ROLES = ('donor', 'charity', 'volunteer')
ORGANIZATION_TYPES = ('charity', 'restaurant', 'grocery', 'other')
VERIFICATION_STATUSES = ('pending', 'verified', 'rejected')

FOOD_TYPES = ('prepared', 'raw', 'packaged', 'other')
UNITS = ('kg', 'items', 'servings', 'liters')
DONATION_STATUSES = ('pending', 'approved', 'in_progress', 'completed', 'cancelled', 'expired')

BUSINESS_TYPES = ('restaurant', 'store')
PICKUP_WINDOWS = ('morning', 'afternoon', 'evening')
FREQUENCIES = ('daily', 'weekly', 'custom')
RESTAURANT_STATUSES = ('pending', 'approved', 'rejected')

TASK_TYPES = ('pickup', 'delivery', 'verification', 'other')
TASK_STATUSES = ('open', 'assigned', 'in_progress', 'completed', 'cancelled')
TASK_PRIORITIES = ('low', 'medium', 'high', 'urgent')


def utcnow():
    """Naive UTC timestamp; every stored datetime is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None


# ==========================================
#  1. USER MODEL
# ==========================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='donor')
    phone = db.Column(db.String(20), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    # --- ORGANIZATION ---
    organization_name = db.Column(db.String(150), nullable=True)
    organization_type = db.Column(db.String(20), default='other')
    verification_status = db.Column(db.String(20), default='pending')

    # --- COUNTERS ---
    total_donations = db.Column(db.Integer, default=0)
    total_received = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.Index('idx_users_role', 'role'),
        db.Index('idx_users_verification', 'verification_status'),
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'phone': self.phone,
            'address': self.address,
            'organization_name': self.organization_name,
            'organization_type': self.organization_type,
            'verification_status': self.verification_status,
            'total_donations': self.total_donations,
            'total_received': self.total_received,
            'is_active': self.is_active,
            'created_at': isoformat(self.created_at),
        }


# ==========================================
#  2. RESTAURANT (BUSINESS PROFILE) MODEL
# ==========================================
class Restaurant(db.Model):
    __tablename__ = 'restaurants'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    business_type = db.Column(db.String(20), nullable=False)
    business_name = db.Column(db.String(150), unique=True, nullable=False)
    contact_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    pickup_time = db.Column(db.String(20), nullable=False)
    frequency = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), default='pending')
    rating = db.Column(db.Float, default=0)
    total_donations = db.Column(db.Integer, default=0)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    owner = db.relationship('User', backref=db.backref('restaurant', uselist=False))

    __table_args__ = (
        db.Index('idx_restaurants_status', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'business_type': self.business_type,
            'business_name': self.business_name,
            'contact_name': self.contact_name,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'pickup_time': self.pickup_time,
            'frequency': self.frequency,
            'status': self.status,
            'rating': self.rating,
            'total_donations': self.total_donations,
            'created_at': isoformat(self.created_at),
        }


# ==========================================
#  3. DONATION MODEL
# ==========================================
class Donation(db.Model):
    __tablename__ = 'donations'

    id = db.Column(db.Integer, primary_key=True)

    # --- PARTIES ---
    donor_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    charity_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    volunteer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    # --- CONTENT ---
    food_type = db.Column(db.String(20), nullable=False)
    quantity = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(20), nullable=False)
    description = db.Column(db.Text, nullable=False)

    # --- LOGISTICS ---
    pickup_address = db.Column(db.String(255), nullable=False)
    pickup_time = db.Column(db.DateTime, nullable=False)
    expiry_time = db.Column(db.DateTime, nullable=False)

    # --- LIFECYCLE ---
    status = db.Column(db.String(20), nullable=False, default='pending')
    admin_approval = db.Column(db.Boolean, nullable=False, default=False)
    admin_notes = db.Column(db.Text)

    # --- FEEDBACK ---
    rating_score = db.Column(db.Float, nullable=True)
    rating_feedback = db.Column(db.Text, nullable=True)
    rating_given_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    rated_at = db.Column(db.DateTime, nullable=True)

    # --- TIMESTAMPS ---
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    donor = db.relationship('User', foreign_keys=[donor_id], backref='donations')
    charity = db.relationship('User', foreign_keys=[charity_id])
    volunteer = db.relationship('User', foreign_keys=[volunteer_id])
    tracking_history = db.relationship(
        'TrackingEntry', backref='donation', lazy=True,
        order_by='TrackingEntry.id',
    )

    __table_args__ = (
        db.Index('idx_donations_donor_status', 'donor_id', 'status'),
        db.Index('idx_donations_charity_status', 'charity_id', 'status'),
        db.Index('idx_donations_volunteer_status', 'volunteer_id', 'status'),
        db.Index('idx_donations_status_pickup', 'status', 'pickup_time'),
        db.Index('idx_donations_approval_status', 'admin_approval', 'status'),
    )

    def rating_dict(self):
        if self.rating_score is None:
            return None
        return {
            'score': self.rating_score,
            'feedback': self.rating_feedback,
            'given_by': self.rating_given_by_id,
            'rated_at': isoformat(self.rated_at),
        }

    def to_dict(self, include_history=False):
        data = {
            'id': self.id,
            'donor': self.donor_id,
            'donor_name': self.donor.name if self.donor else None,
            'charity': self.charity_id,
            'volunteer': self.volunteer_id,
            'food_type': self.food_type,
            'quantity': self.quantity,
            'unit': self.unit,
            'description': self.description,
            'pickup_address': self.pickup_address,
            'pickup_time': isoformat(self.pickup_time),
            'expiry_time': isoformat(self.expiry_time),
            'status': self.status,
            'admin_approval': self.admin_approval,
            'admin_notes': self.admin_notes,
            'rating': self.rating_dict(),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
            'completed_at': isoformat(self.completed_at),
        }
        if include_history:
            data['tracking_history'] = [entry.to_dict() for entry in self.tracking_history]
        return data


class TrackingEntry(db.Model):
    """
    One row per donation status change. Rows are only ever inserted,
    which keeps the history append-only.
    """
    __tablename__ = 'tracking_entries'

    id = db.Column(db.Integer, primary_key=True)
    donation_id = db.Column(db.Integer, db.ForeignKey('donations.id'), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)  # NULL = system
    notes = db.Column(db.String(255))

    def to_dict(self):
        return {
            'status': self.status,
            'timestamp': isoformat(self.timestamp),
            'updated_by': self.updated_by,
            'notes': self.notes,
        }


# ==========================================
#  4. TASK MODEL
# ==========================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    donation_id = db.Column(db.Integer, db.ForeignKey('donations.id'), nullable=False)
    volunteer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    type = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='open')
    priority = db.Column(db.String(20), default='medium')
    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(255), nullable=False)
    scheduled_time = db.Column(db.DateTime, nullable=False)
    estimated_duration = db.Column(db.Integer, nullable=False)  # minutes
    requirements = db.Column(db.JSON, default=list)
    completion_notes = db.Column(db.Text)
    verification_status = db.Column(db.String(20), default='pending')
    verified_by_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    donation = db.relationship('Donation', backref='tasks')

    __table_args__ = (
        db.Index('idx_tasks_donation_status', 'donation_id', 'status'),
        db.Index('idx_tasks_volunteer_status', 'volunteer_id', 'status'),
        db.Index('idx_tasks_status_scheduled', 'status', 'scheduled_time'),
        db.Index('idx_tasks_type_status', 'type', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'donation': self.donation_id,
            'volunteer': self.volunteer_id,
            'type': self.type,
            'status': self.status,
            'priority': self.priority,
            'description': self.description,
            'location': self.location,
            'scheduled_time': isoformat(self.scheduled_time),
            'estimated_duration': self.estimated_duration,
            'requirements': self.requirements or [],
            'completion_notes': self.completion_notes,
            'verification_status': self.verification_status,
            'verified_by': self.verified_by_id,
            'created_at': isoformat(self.created_at),
        }


# ==========================================
#  5. AUDIT LOG MODEL
# ==========================================
class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)  # NULL = system
    action = db.Column(db.String(50), nullable=False)
    details = db.Column(db.String(255))
    timestamp = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', backref='logs')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user': self.user.name if self.user else 'system',
            'action': self.action,
            'details': self.details,
            'timestamp': isoformat(self.timestamp),
        }
