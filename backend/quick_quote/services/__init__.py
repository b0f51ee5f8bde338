# services/__init__.py

from .quote_service import QuickQuoteService
from .pricing import price_quick_order, resolve_student_discount, is_student_discount_locked
from .shipping import quote_shipping

__all__ = [
    "QuickQuoteService",
    "price_quick_order",
    "resolve_student_discount",
    "is_student_discount_locked",
    "quote_shipping",
]
