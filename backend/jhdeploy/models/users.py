"""Account domain record backing the user view-models"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON

from jhdeploy.db.session import Base


class User(Base):
    """Application user as stored by the deployed service."""

    __tablename__ = "jhi_user"

    id = Column(Integer, primary_key=True)
    login = Column(String(50), nullable=False, unique=True, index=True)
    password_hash = Column(String(60), nullable=True)
    first_name = Column(String(50))
    last_name = Column(String(50))
    email = Column(String(254), unique=True)
    image_url = Column(String(256))
    activated = Column(Boolean, nullable=False, default=False)
    lang_key = Column(String(10))
    authorities = Column(JSON, nullable=False, default=list)

    # Audit
    created_by = Column(String(50))
    created_date = Column(DateTime)
    last_modified_by = Column(String(50))
    last_modified_date = Column(DateTime)

    def __repr__(self):
        return f"<User id={self.id} login={self.login!r}>"
