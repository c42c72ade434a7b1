from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, LargeBinary, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class WebhookLog(Base):
    """
    Append-only record of every inbound gateway delivery, written before the
    signature is checked. Rows are updated in place as processing completes
    and are never deleted.
    """
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event: Mapped[str] = mapped_column(String(100), nullable=False)
    # Exact bytes as received; payload is a lossy text view for reading.
    raw_payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    signature_header: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    processing_result: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    __table_args__ = (
        Index("ix_webhook_logs_processed_received_at", "processed", "received_at"),
        Index("ix_webhook_logs_payment_processed", "gateway_payment_id", "processed"),
    )
