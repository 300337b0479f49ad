from app.models.user import User, UserRole
from app.models.category import Category
from app.models.product import Product
from app.models.cart import Cart, CartItem
from app.models.offer import Offer, OfferType, DiscountType
from app.models.order import Order, OrderItem, OrderStatus
from app.models.payment import Payment, PaymentStatus
