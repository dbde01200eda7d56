from .catalog import Product, Variant, Address
from .pricing import MOQSetting, PricingSlab, FlashSale, FlashSaleProduct, RuleScope
from .cart import CartItem
from .inventory import InventoryLogEntry
from .orders import Order, OrderItem, Tracking, TrackingUpdate, ReturnRequest, DocumentSequence
from .payments import Payment, Refund
from .partners import Coupon, Partner, CouponPartner, PartnerEarning, CommissionMarker

__all__ = [
    'Product', 'Variant', 'Address',
    'MOQSetting', 'PricingSlab', 'FlashSale', 'FlashSaleProduct', 'RuleScope',
    'CartItem',
    'InventoryLogEntry',
    'Order', 'OrderItem', 'Tracking', 'TrackingUpdate', 'ReturnRequest', 'DocumentSequence',
    'Payment', 'Refund',
    'Coupon', 'Partner', 'CouponPartner', 'PartnerEarning', 'CommissionMarker',
]
