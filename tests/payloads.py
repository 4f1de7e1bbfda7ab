"""
Order and refund payload builders for tests.
"""
from datetime import datetime, timedelta


def days_ago(days: int) -> datetime:
    return datetime.utcnow() - timedelta(days=days)


def make_line_item(variation_id='VAR-1', quantity=1, unit_price=1500, discount_uids=None,
                   total=None, total_discount=0):
    """Line item payload in the commerce platform's shape."""
    quantity_value = int(quantity)
    gross = unit_price * quantity_value
    return {
        'uid': f'LI-{variation_id}-{quantity}',
        'catalog_object_id': variation_id,
        'quantity': str(quantity),
        'base_price_money': {'amount': unit_price, 'currency': 'USD'},
        'gross_sales_money': {'amount': gross, 'currency': 'USD'},
        'total_discount_money': {'amount': total_discount, 'currency': 'USD'},
        'total_money': {'amount': gross - total_discount if total is None else total, 'currency': 'USD'},
        'applied_discounts': [{'discount_uid': uid} for uid in discount_uids or []],
    }


def make_order(order_id='ORDER-1', customer_id='CUST-1', line_items=None, discounts=None,
               tenders=None, created_at=None, location_id='LOC-1'):
    """Order payload in the commerce platform's shape."""
    created_at = created_at or datetime.utcnow()
    return {
        'id': order_id,
        'location_id': location_id,
        'customer_id': customer_id,
        'created_at': created_at.strftime('%Y-%m-%dT%H:%M:%SZ'),
        'line_items': line_items if line_items is not None else [make_line_item()],
        'discounts': discounts or [],
        'tenders': tenders or [],
    }


def make_refund(refund_id='REF-1', order_id='ORDER-1', returns=None, created_at=None):
    """Refund payload; returns is a list of (variation_id, quantity) pairs."""
    created_at = created_at or datetime.utcnow()
    return {
        'id': refund_id,
        'order_id': order_id,
        'created_at': created_at.strftime('%Y-%m-%dT%H:%M:%SZ'),
        'return_line_items': [
            {
                'catalog_object_id': variation_id,
                'quantity': str(quantity),
                'base_price_money': {'amount': 1500, 'currency': 'USD'},
            }
            for variation_id, quantity in (returns or [('VAR-1', 1)])
        ],
    }
