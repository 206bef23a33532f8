"""
Stock alerts

Products at or below their minimum stock, and lines of open orders that the
current stock cannot cover.
"""

from typing import Iterable, List

from app.modules.analytics.schemas import InsufficientStockItem, StockAlerts
from app.modules.transactions.schemas import OrderTransaction, ProductStock


def identify_low_stock(products: Iterable[ProductStock]) -> List[ProductStock]:
    """Products whose stock is at or below a configured (non-zero) minimum"""
    return [p for p in products if p.min_stock > 0 and p.current_stock <= p.min_stock]


def find_insufficient_stock(
    orders: Iterable[OrderTransaction],
    products: Iterable[ProductStock],
) -> List[InsufficientStockItem]:
    """
    Lines of pending orders asking for more units than the product has.

    Lines without a known product are ignored. Newest orders first.
    """
    by_id = {p.id: p for p in products}

    items = []
    for order in orders:
        if not order.is_pending:
            continue
        for line in order.lines:
            product = by_id.get(line.product_id)
            if product is None:
                continue
            shortfall = line.quantity - product.current_stock
            if shortfall > 0:
                items.append(InsufficientStockItem(
                    order_id=order.id,
                    order_date=order.date,
                    client_id=order.client_id,
                    product_id=product.id,
                    product_name=product.name,
                    ordered_quantity=line.quantity,
                    current_stock=product.current_stock,
                    shortfall=shortfall,
                ))

    items.sort(key=lambda item: item.order_date, reverse=True)
    return items


def build_stock_alerts(products: Iterable[ProductStock], open_orders: Iterable[OrderTransaction]) -> StockAlerts:
    products = list(products)
    return StockAlerts(
        low_stock_products=identify_low_stock(products),
        insufficient_stock_items=find_insufficient_stock(open_orders, products),
    )
