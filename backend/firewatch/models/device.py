from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Table, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import BaseConfig

detector_stores = Table(
    "detector_stores",
    BaseConfig.metadata,
    Column("id", Integer, primary_key=True),
    Column("detector_id", Integer, ForeignKey("detectors.id", ondelete="CASCADE"), nullable=False),
    Column("store_id", Integer, ForeignKey("stores.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("detector_id", "store_id", name="uq_detector_store"),
)


class Market(BaseConfig):
    __tablename__ = "markets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), index=True, nullable=False)
    address = Column(String(255), nullable=True)
    # Administrative on/off, independent of the live status below
    usage_status = Column(String(10), default="사용", nullable=False)
    # Derived: Normal | Fire | Error, written only by the status aggregator
    status = Column(String(10), default="Normal", nullable=False)
    status_updated_at = Column(DateTime, nullable=True)

    receivers = relationship("Receiver", back_populates="market", cascade="all, delete-orphan")
    stores = relationship("Store", back_populates="market", cascade="all, delete-orphan")


class Store(BaseConfig):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(String(10), default="사용")

    market = relationship("Market", back_populates="stores")
    detectors = relationship("Detector", secondary=detector_stores, back_populates="stores")


class Receiver(BaseConfig):
    __tablename__ = "receivers"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    mac_address = Column(String(32), index=True, nullable=False)
    ip = Column(String(64), nullable=True)
    transmission_interval = Column(String(20), nullable=True)
    status = Column(String(10), default="사용")

    market = relationship("Market", back_populates="receivers")

    __table_args__ = (UniqueConstraint("market_id", "mac_address", name="uq_receiver_market_mac"),)


class Repeater(BaseConfig):
    __tablename__ = "repeaters"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    receiver_mac = Column(String(32), index=True, nullable=False)
    repeater_id = Column(String(2), nullable=False)
    alarm_status = Column(String(10), default="사용")
    location = Column(String(255), nullable=True)
    status = Column(String(10), default="사용")

    __table_args__ = (UniqueConstraint("receiver_mac", "repeater_id", name="uq_repeater_key"),)


class Detector(BaseConfig):
    __tablename__ = "detectors"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    receiver_mac = Column(String(32), index=True, nullable=False)
    repeater_id = Column(String(2), nullable=False)
    detector_id = Column(String(2), nullable=False)
    mode = Column(String(10), default="복합")  # 복합 | 열 | 연기
    memo = Column(Text, nullable=True)
    status = Column(String(10), default="사용")

    stores = relationship("Store", secondary=detector_stores, back_populates="detectors")

    __table_args__ = (
        UniqueConstraint("receiver_mac", "repeater_id", "detector_id", name="uq_detector_key"),
    )


class Transmitter(BaseConfig):
    __tablename__ = "transmitters"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    receiver_mac = Column(String(32), index=True, nullable=False)
    repeater_id = Column(String(2), nullable=False)
    transmitter_id = Column(String(2), nullable=False)
    status = Column(String(10), default="사용")


class Alarm(BaseConfig):
    __tablename__ = "alarms"

    id = Column(Integer, primary_key=True, index=True)
    market_id = Column(Integer, ForeignKey("markets.id", ondelete="CASCADE"), nullable=False)
    receiver_mac = Column(String(32), index=True, nullable=False)
    repeater_id = Column(String(2), nullable=False)
    alarm_id = Column(String(2), nullable=False)
    status = Column(String(10), default="사용")
