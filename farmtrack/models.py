from datetime import datetime, timezone

from . import db

ANIMAL_TYPES = ('Cow', 'Hen', 'Horse', 'Sheep', 'Goat')
GENDERS = ('Male', 'Female')
USER_ROLES = ('admin', 'vet', 'worker')

# Key of the per-farm setting that holds the "HH:MM" night check time.
NIGHT_CHECK_SCHEDULE_KEY = 'night_check_schedule'


def utc_now():
    """Timezone-aware current time, used for created/updated timestamps."""
    return datetime.now(timezone.utc)


class User(db.Model):
    """A person with access to the system. Admins own farms; vets and workers belong to one."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(db.String(20), nullable=False, default='worker')
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # --- Foreign Keys ---
    # Admins may exist without a farm until they register one.
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=True)

    def to_dict(self):
        """Serializes the User object to a dictionary."""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'is_active': self.is_active,
            'farm_id': self.farm_id,
        }

    def __repr__(self):
        return f'<User {self.email} ({self.role})>'


class Farm(db.Model):
    """Represents a single farm, the tenant boundary for every other record."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    location = db.Column(db.String(200), nullable=True)
    # Id of the admin user that registered the farm; night check alerts are addressed to them.
    owner_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    # --- Relationships ---
    # 'cascade="all, delete-orphan"' ensures that if a farm is deleted, all its related data is also deleted.
    animals = db.relationship('Animal', backref='farm', lazy=True, cascade="all, delete-orphan")
    return_logs = db.relationship('ReturnLog', backref='farm', lazy=True, cascade="all, delete-orphan")
    settings = db.relationship('Setting', backref='farm', lazy=True, cascade="all, delete-orphan")
    notifications = db.relationship('Notification', backref='farm', lazy=True, cascade="all, delete-orphan")
    members = db.relationship('User', backref='farm', lazy=True)

    def to_dict(self):
        """Serializes the Farm object to a dictionary."""
        return {
            'id': self.id,
            'name': self.name,
            'location': self.location,
            'owner_id': self.owner_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        """Provides a developer-friendly string representation of the object."""
        return f'<Farm {self.name}>'


class Animal(db.Model):
    """A single animal on a farm, identified by its tag number."""
    id = db.Column(db.Integer, primary_key=True)
    tag_number = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    type = db.Column(db.String(20), nullable=False)
    age = db.Column(db.Float, nullable=True)
    gender = db.Column(db.String(10), nullable=True)

    # --- Foreign Keys ---
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    # --- Relationships ---
    return_logs = db.relationship('ReturnLog', backref='animal', lazy=True, cascade="all, delete-orphan")

    # --- Constraints ---
    # Tag numbers only need to be unique within a farm, not globally.
    __table_args__ = (db.UniqueConstraint('tag_number', 'farm_id', name='_tag_number_farm_uc'),)

    @property
    def label(self):
        """Name and tag as shown in alert messages, e.g. 'Bessie (A1)'."""
        return f'{self.name} ({self.tag_number})'

    def to_dict(self):
        """Serializes the Animal object to a dictionary."""
        return {
            'id': self.id,
            'tag_number': self.tag_number,
            'name': self.name,
            'type': self.type,
            'age': self.age,
            'gender': self.gender,
            'farm_id': self.farm_id,
        }

    def __repr__(self):
        return f'<Animal {self.tag_number} (Farm: {self.farm_id})>'


class ReturnLog(db.Model):
    """
    Whether an animal came back to the barn on a given calendar day.
    There is at most one row per animal and date; later scans update it in place.
    """
    id = db.Column(db.Integer, primary_key=True)
    # Plain calendar date, no time of day or timezone.
    date = db.Column(db.Date, nullable=False)
    returned = db.Column(db.Boolean, nullable=False, default=False)
    return_reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # --- Foreign Keys ---
    animal_id = db.Column(db.Integer, db.ForeignKey('animal.id'), nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    __table_args__ = (db.UniqueConstraint('animal_id', 'date', name='_animal_date_uc'),)

    def to_dict(self):
        """Serializes the ReturnLog object to a dictionary, including a short animal summary."""
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'returned': self.returned,
            'return_reason': self.return_reason,
            'animal_id': self.animal_id,
            'farm_id': self.farm_id,
            'animal': {
                'tag_number': self.animal.tag_number,
                'name': self.animal.name,
                'type': self.animal.type,
            } if self.animal else None,
        }

    def __repr__(self):
        return f'<ReturnLog animal={self.animal_id} {self.date} returned={self.returned}>'


class Setting(db.Model):
    """A per-farm key/value pair, e.g. the night check schedule."""
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False)
    value = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # --- Foreign Keys ---
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    __table_args__ = (db.UniqueConstraint('key', 'farm_id', name='_key_farm_uc'),)

    def to_dict(self):
        return {'key': self.key, 'value': self.value}

    def __repr__(self):
        return f'<Setting {self.key}={self.value} (Farm: {self.farm_id})>'


class Notification(db.Model):
    """An alert addressed to a user of a farm."""
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    # --- Foreign Keys ---
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    farm_id = db.Column(db.Integer, db.ForeignKey('farm.id'), nullable=False)

    def to_dict(self):
        """Serializes the Notification object to a dictionary."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'farm_id': self.farm_id,
            'title': self.title,
            'message': self.message,
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Notification {self.title} (Farm: {self.farm_id})>'
