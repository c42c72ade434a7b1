from storefront.models.user import User
from storefront.models.product import Product
from storefront.models.cart import Cart, CartItem, SessionCart
from storefront.models.order import Order, OrderItem
from storefront.models.webhook_log import WebhookLog
