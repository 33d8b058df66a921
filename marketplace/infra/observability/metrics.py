from prometheus_client import Counter, Histogram


# Order Metrics
orders_placed_total = Counter("marketplace_orders_placed_total", "Total orders placed", ["status"])
order_value = Histogram(
    "marketplace_order_value",
    "Order value distribution",
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 5000, float("inf")],
)
order_status_transitions_total = Counter(
    "marketplace_order_status_transitions_total", "Payment-driven order status changes", ["status"]
)

# Stock Metrics
stock_reservation_failures = Counter("marketplace_stock_reservation_failure", "Stock reservation failures")
stock_updates_total = Counter("marketplace_stock_updates_total", "Seller stock edits", ["operation", "result"])

# Performance Metrics
order_placement_duration = Histogram(
    "marketplace_order_placement_seconds", "Time spent placing an order, retries included"
)
