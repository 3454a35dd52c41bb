from authcore import db
from authcore.models.enums import UserRole
from authcore.utils.helpers import utcnow
import uuid


class User(db.Model):
    """Compte membre (authentification sans mot de passe, par code email)"""
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    email = db.Column(db.String(120), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(50))
    last_name = db.Column(db.String(50))

    # Rôles: SUPER_ADMIN, ADMIN, MENTOR, STUDENT, ALUMNI, USER
    role = db.Column(db.String(20), nullable=False, default=UserRole.USER.value)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    email_verified = db.Column(db.Boolean, nullable=False, default=False)  # Vérifié par OTP

    # Bannissement
    is_banned = db.Column(db.Boolean, nullable=False, default=False)
    banned_at = db.Column(db.DateTime)
    banned_by = db.Column(db.String(36))
    ban_reason = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    last_login = db.Column(db.DateTime)

    sessions = db.relationship('UserSession', backref='user', lazy='dynamic')

    @property
    def full_name(self):
        parts = [p for p in (self.first_name, self.last_name) if p]
        return ' '.join(parts) or self.email.split('@')[0]

    @property
    def can_authenticate(self) -> bool:
        """Compte actif et non banni"""
        return bool(self.is_active) and not self.is_banned

    def ban(self, reason: str = None, banned_by: str = None):
        self.is_banned = True
        self.banned_at = utcnow()
        self.banned_by = banned_by
        self.ban_reason = reason

    def unban(self):
        self.is_banned = False
        self.banned_at = None
        self.banned_by = None
        self.ban_reason = None

    def to_dict(self, include_private=False):
        data = {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'role': self.role,
            'email_verified': self.email_verified,
        }
        if include_private:
            data.update({
                'is_active': self.is_active,
                'is_banned': self.is_banned,
                'ban_reason': self.ban_reason,
                'last_login': self.last_login.isoformat() if self.last_login else None,
                'created_at': self.created_at.isoformat() if self.created_at else None,
            })
        return data
