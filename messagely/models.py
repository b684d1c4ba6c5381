"""
The users and messages tables.

Messages reference both parties by username; the SQLite connection enables
foreign keys so a message can only point at registered users.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from messagely.storage import Base


class User(Base):
    """
    Registered user.

    Table: users
    Primary Key: username
    """
    __tablename__ = "users"

    username = Column(String, primary_key=True)
    password = Column(String, nullable=False)  # bcrypt hash
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    join_at = Column(DateTime(timezone=True), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)


class Message(Base):
    """
    Message sent from one user to another.

    Table: messages
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    from_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    to_username = Column(String, ForeignKey("users.username"), nullable=False, index=True)
    body = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
