# src/wmrecorder/db/models.py
from sqlalchemy import Column, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WindowEventRecord(Base):
    __tablename__ = "window_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_source = Column(Text, nullable=False)  # "open", "close", "move", "focus", "title_change", "other"
    event_time = Column(Text, nullable=False)  # UTC "YYYY-MM-DD HH:MM:SS"
    window_area = Column(Integer)
    window_class = Column(Text)
    window_name = Column(Text)
