"""
Authentication Manager Module - QR Event Check-in System

Profiles for students and administrators. A ``Profile`` is what request
handlers pass into the event and registration managers as the caller's
session context; nothing in the managers reads ambient session state.
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import logging
import re
import uuid
from dataclasses import dataclass, asdict


EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass
class Profile:
    """Authenticated caller."""
    id: str
    full_name: str
    email: str
    role: str
    created_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == AuthManager.ROLE_ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuthManager:
    """
    Profile creation and password authentication.
    """

    ROLE_STUDENT = 'student'
    ROLE_ADMIN = 'admin'
    ROLES = (ROLE_STUDENT, ROLE_ADMIN)

    def __init__(self, database_manager, password_min_length: int = 6):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            password_min_length (int): Minimum accepted password length
        """
        self.db = database_manager
        self.password_min_length = password_min_length
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_profile(row: Optional[Dict[str, Any]]) -> Optional[Profile]:
        if not row:
            return None
        return Profile(
            id=row['id'],
            full_name=row['full_name'],
            email=row['email'],
            role=row['role'],
            created_at=row.get('created_at')
        )

    def create_profile(self, full_name: str, email: str, password: str,
                       role: str = ROLE_STUDENT) -> Dict[str, Any]:
        """
        Create a new profile.

        Args:
            full_name (str): Display name
            email (str): Unique login email
            password (str): Plain-text password, stored hashed
            role (str): 'student' or 'admin'

        Returns:
            Dict[str, Any]: Creation result with the new profile
        """
        full_name = (full_name or '').strip()
        email = (email or '').strip().lower()

        if not full_name or not email or not password:
            return {'success': False, 'error': 'Full name, email and password are required'}

        if not EMAIL_PATTERN.match(email):
            return {'success': False, 'error': 'Invalid email address'}

        if len(password) < self.password_min_length:
            return {
                'success': False,
                'error': f'Password must be at least {self.password_min_length} characters long'
            }

        if role not in self.ROLES:
            return {'success': False, 'error': f'Unknown role: {role}'}

        existing = self.db.execute_query(
            "SELECT id FROM profiles WHERE email = ?",
            (email,),
            fetch_all=False
        )
        if existing:
            return {'success': False, 'error': 'Email already in use'}

        profile_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            self.db.execute_update(
                """INSERT INTO profiles (id, full_name, email, password, role, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (profile_id, full_name, email, generate_password_hash(password), role, created_at)
            )
        except Exception as e:
            if self.db.is_unique_violation(e):
                return {'success': False, 'error': 'Email already in use'}
            self.logger.error(f"Profile creation failed for {email}: {str(e)}")
            return {'success': False, 'error': 'Failed to create profile'}

        self.logger.info(f"Profile created: {email} ({role})")
        profile = Profile(id=profile_id, full_name=full_name, email=email,
                          role=role, created_at=created_at)
        return {'success': True, 'profile': profile}

    def authenticate(self, email: str, password: str) -> Optional[Profile]:
        """
        Authenticate a profile with email and password.

        Returns:
            Profile: the authenticated profile, or None
        """
        email = (email or '').strip().lower()
        row = self.db.execute_query(
            "SELECT * FROM profiles WHERE email = ?",
            (email,),
            fetch_all=False
        )

        if not row or not check_password_hash(row['password'], password or ''):
            self.logger.warning(f"Authentication failed for {email}")
            return None

        self.logger.info(f"Profile authenticated: {email}")
        return self._to_profile(row)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        return self._to_profile(self.db.execute_query(
            "SELECT * FROM profiles WHERE id = ?",
            (profile_id,),
            fetch_all=False
        ))
