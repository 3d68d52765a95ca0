"""Session user.

The backend API owns user accounts. After login we keep the profile it
returned in the Flask session and rebuild this object from it on every
request. Flask-Login integration via UserMixin.
"""

from flask_login import UserMixin


class SessionUser(UserMixin):

    def __init__(self, id, email, name=None, is_admin=False):
        self.id = str(id)
        self.email = email
        self.name = name
        self.is_admin = bool(is_admin)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            email=data.get("email"),
            name=data.get("name"),
            is_admin=data.get("is_admin", False),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "is_admin": self.is_admin,
        }

    def __repr__(self):
        return f"<SessionUser {self.email}>"
