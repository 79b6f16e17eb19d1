from sqlalchemy import Column, Integer, String, Text

from ..database import BaseConfig


class CommonCode(BaseConfig):
    __tablename__ = "common_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(16), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)  # e.g. 화재알람, 화재해소, 통신단선
    description = Column(Text, nullable=True)
    group_code = Column(String(32), nullable=True)
    group_name = Column(String(100), nullable=True)
    status = Column(String(10), default="사용")
    # fire | fault | recovered | normal; NULL falls back to keyword matching on name
    severity = Column(String(16), nullable=True)
