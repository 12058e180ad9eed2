import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime
from ..database import Base


class User(Base):
    """
    Student profile as seen by the booking reconciliation core.

    Only first_free_class is ever written from here; the rest of the profile
    belongs to the identity/profile collaborators.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=True)
    role = Column(String(30), default="student")
    first_free_class = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.email} first_free_class={self.first_free_class}>"
