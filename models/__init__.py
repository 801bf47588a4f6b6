from models.customer import Customer, CustomerLabel
from models.order import Order, OrderAddress, OrderLine, OrderLineType, AddressKind
from models.shipment import ShippingMethod, DeliveryNote, DeliveryNoteLine, Shipment
from models.pricing import Article, CustomerArticlePrice, CustomerShippingRate
from models.goods_receipt import GoodsReceipt, ReceiptStatus, PackageKind, ReceiptCondition
from models.receipt_photo import ReceiptPhoto
from models.receipt_document import ReceiptDocument, DocumentType
from models.log import UserActivityLog

__all__ = [
    "Customer", "CustomerLabel", "Order", "OrderAddress", "OrderLine", "OrderLineType", "AddressKind",
    "ShippingMethod", "DeliveryNote", "DeliveryNoteLine", "Shipment", "Article", "CustomerArticlePrice",
    "CustomerShippingRate", "GoodsReceipt", "ReceiptStatus", "PackageKind", "ReceiptCondition",
    "ReceiptPhoto", "ReceiptDocument", "DocumentType", "UserActivityLog",
]
