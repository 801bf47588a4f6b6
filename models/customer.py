from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from database import ErpBase


class Customer(ErpBase):
    """ERP customer master record (read-only)"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    customer_number = Column(String(30), unique=True, index=True, nullable=False)
    company_name = Column(String(200))
    first_name = Column(String(100))
    last_name = Column(String(100))
    customer_group_id = Column(Integer, nullable=True)

    labels = relationship("CustomerLabel", back_populates="customer")


class CustomerLabel(ErpBase):
    """Tags a customer with a service class, e.g. the fulfillment label"""
    __tablename__ = "customer_labels"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)
    label_id = Column(Integer, primary_key=True, index=True)

    customer = relationship("Customer", back_populates="labels")
