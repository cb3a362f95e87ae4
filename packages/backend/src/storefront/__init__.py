"""Storefront — catalog API and live product updates.

The backend behind the shop: product listing with filters, sort and
pagination, product detail, new arrivals, and a server-sent events
channel that pushes stock and price changes to open browser tabs.
"""

__version__ = "0.1.0"
