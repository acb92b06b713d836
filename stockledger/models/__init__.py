from stockledger.models.product import Product
from stockledger.models.stock_movement import StockMovement

from stockledger.db.immutability import register_immutability_listeners

register_immutability_listeners()
