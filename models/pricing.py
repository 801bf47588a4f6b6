from sqlalchemy import Column, Integer, Float, String, ForeignKey
from database import ErpBase


class Article(ErpBase):
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, index=True)
    article_number = Column(String(50), index=True)
    name = Column(String(255))
    purchase_net_price = Column(Float)
    width = Column(Float)
    height = Column(Float)
    length = Column(Float)


class CustomerArticlePrice(ErpBase):
    """Negotiated net price of an article for one customer (e.g. the pick service article)"""
    __tablename__ = "customer_article_prices"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)
    article_id = Column(Integer, ForeignKey("articles.id"), primary_key=True)
    net_price = Column(Float, nullable=False)


class CustomerShippingRate(ErpBase):
    """Negotiated net shipping price per customer and shipping method"""
    __tablename__ = "customer_shipping_rates"

    customer_id = Column(Integer, ForeignKey("customers.id"), primary_key=True)
    shipping_method_id = Column(Integer, ForeignKey("shipping_methods.id"), primary_key=True)
    net_price = Column(Float, nullable=False)
