from sqlalchemy import Column, Integer, Float, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from database import ErpBase
import enum


class OrderLineType(int, enum.Enum):
    ARTICLE = 1
    PACKAGING = 15


class AddressKind(int, enum.Enum):
    DELIVERY = 0
    BILLING = 1


class Order(ErpBase):
    """ERP sales order (read-only)"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), index=True, nullable=False)
    external_order_number = Column(String(100), nullable=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    is_cancelled = Column(Boolean, default=False, nullable=False)

    customer = relationship("Customer")
    lines = relationship("OrderLine", back_populates="order", foreign_keys="OrderLine.order_id")
    addresses = relationship("OrderAddress", back_populates="order")


class OrderAddress(ErpBase):
    __tablename__ = "order_addresses"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    kind = Column(Integer, default=AddressKind.DELIVERY.value, nullable=False)
    company = Column(String(200))
    first_name = Column(String(100))
    last_name = Column(String(100))
    street = Column(String(200))
    city = Column(String(100))
    country = Column(String(100))
    country_iso = Column(String(2))

    order = relationship("Order", back_populates="addresses")


class OrderLine(ErpBase):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    article_id = Column(Integer, ForeignKey("articles.id"), nullable=True)
    line_type = Column(Integer, default=OrderLineType.ARTICLE.value, nullable=False)
    name = Column(String(255))
    quantity = Column(Float, default=0, nullable=False)
    net_price = Column(Float, default=0, nullable=False)
    sort_index = Column(Integer, default=0, nullable=False)
    # Bill-of-materials head; the head line points at itself, its components at the head
    bom_head_line_id = Column(Integer, nullable=True)

    order = relationship("Order", back_populates="lines", foreign_keys=[order_id])
    article = relationship("Article")
