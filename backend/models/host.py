from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Index
from database import Base
from utils.identity import utc_now

HOST_CATEGORIES = ("lan", "vpn", "remote")


class Host(Base):
    """SQLAlchemy model for iperf3 test targets."""

    __tablename__ = "hosts"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)
    hostname = Column(String(255), nullable=False)  # DNS name or IP address
    port = Column(Integer, nullable=False, default=5201)
    category = Column(String(10), nullable=False)  # lan/vpn/remote

    # Inactive hosts keep their history but are skipped by host selection
    active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_host_category_active", "category", "active"),
    )

    def __repr__(self):
        return f"<Host(id={self.id}, name={self.name}, {self.hostname}:{self.port}, category={self.category})>"
