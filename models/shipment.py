from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import ErpBase


class ShippingMethod(ErpBase):
    __tablename__ = "shipping_methods"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)


class DeliveryNote(ErpBase):
    """Lieferschein: one or more physical packages fulfilling part of an order"""
    __tablename__ = "delivery_notes"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    number = Column(String(50), index=True, nullable=False)

    order = relationship("Order")
    lines = relationship("DeliveryNoteLine", back_populates="delivery_note")
    shipments = relationship("Shipment", back_populates="delivery_note")


class DeliveryNoteLine(ErpBase):
    __tablename__ = "delivery_note_lines"

    id = Column(Integer, primary_key=True, index=True)
    delivery_note_id = Column(Integer, ForeignKey("delivery_notes.id"), index=True, nullable=False)
    order_line_id = Column(Integer, ForeignKey("order_lines.id"), nullable=False)
    quantity = Column(Float, default=0, nullable=False)

    delivery_note = relationship("DeliveryNote", back_populates="lines")
    order_line = relationship("OrderLine")


class Shipment(ErpBase):
    """One physical package handed to a carrier"""
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    delivery_note_id = Column(Integer, ForeignKey("delivery_notes.id"), index=True, nullable=False)
    shipping_method_id = Column(Integer, ForeignKey("shipping_methods.id"), nullable=True)
    shipped_at = Column(DateTime, nullable=True, index=True)
    tracking_code = Column(String(100))
    weight = Column(Float)
    # Packaging order line (line type PACKAGING) describing the box used
    packaging_line_id = Column(Integer, ForeignKey("order_lines.id"), nullable=True)

    delivery_note = relationship("DeliveryNote", back_populates="shipments")
    shipping_method = relationship("ShippingMethod")
