from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class Petitioner(Base):
    __tablename__ = "petitioners"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    department = Column(String, nullable=True)
    petitioner_number = Column(Integer, nullable=True, index=True)
    # 1 | 2 | 3 -> payment phase / case, see confirmation.payment_display
    petitioner_group = Column(Integer, nullable=True)

    # written together by a single conditional UPDATE, never partially
    payment_confirmed = Column(Boolean, nullable=False, default=False)
    payment_id = Column(String, nullable=True)
    confirmed_by = Column(String, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)


class Admin(Base):
    __tablename__ = "admins"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    admin_code = Column(String, nullable=False, unique=True)


PETITIONER_FIELDS = (
    "id", "name", "email", "department", "petitioner_number",
    "petitioner_group", "payment_confirmed", "payment_id", "confirmed_by",
    "confirmed_at",
)
