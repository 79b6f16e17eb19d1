from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from ..database import BaseData


class FireHistory(BaseData):
    """
    Fire/fault ledger row. market_name is a denormalised copy for display,
    market_id is the stable join key back to the config DB.
    """
    __tablename__ = "fire_history"

    id = Column(Integer, primary_key=True)
    market_id = Column(Integer, index=True, nullable=True)
    market_name = Column(String(255), index=True, nullable=False)
    receiver_mac = Column(String(32), nullable=False)
    receiver_status = Column(String(16), nullable=True)
    repeater_id = Column(String(2), nullable=True)
    repeater_status = Column(String(16), nullable=True)
    detector_id = Column(String(2), nullable=True)
    detector_info_chamber = Column(String(255), nullable=True)
    detector_info_temp = Column(String(255), nullable=True)
    event_class = Column(String(10), index=True, nullable=False)  # fire | fault, frozen at ingest
    registrar = Column(String(100), nullable=False)
    registered_at = Column(DateTime, index=True, nullable=False)
    false_alarm_status = Column(String(10), default="등록", nullable=False)
    note = Column(Text, nullable=True)
    # Fault rows only
    device_type = Column(String(16), nullable=True)
    device_id = Column(String(32), nullable=True)
    error_code = Column(String(16), nullable=True)
    process_status = Column(String(10), index=True, nullable=True)


class DataReception(BaseData):
    __tablename__ = "data_reception"

    id = Column(Integer, primary_key=True)
    market_id = Column(Integer, nullable=True)
    market_name = Column(String(255), nullable=True)
    log_type = Column(String(32), nullable=False)
    receiver_id = Column(String(32), nullable=False)
    repeater_id = Column(String(16), nullable=True)
    # Raw packet payload, stored as received
    received_data = Column(Text, nullable=True)
    comm_status = Column(Text, nullable=True)
    battery_status = Column(Text, nullable=True)
    chamber_status = Column(Text, nullable=True)
    registered_at = Column(DateTime, nullable=False)

    __table_args__ = (Index("ix_data_reception_registered_at", "registered_at"),)
