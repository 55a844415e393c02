"""Canned MySQL queries used when the language model is unreachable.

Rules are checked in order against the lower-cased question; the first
rule whose keyword groups all match wins.
"""

import logging

logger = logging.getLogger(__name__)

GENERIC_FALLBACK_SQL = "SELECT 'Please provide more specific information about your database schema' AS message;"

# Each rule: (keyword groups, sql). Every group needs at least one hit.
FALLBACK_RULES: list[tuple[tuple[tuple[str, ...], ...], str]] = [
    (
        (("top", "best", "highest"), ("account", "user")),
        "SELECT id, name, email, created_at FROM accounts ORDER BY created_at DESC LIMIT 5;",
    ),
    (
        (
            ("highest", "top", "most"),
            ("customer",),
            ("invoice", "order", "purchase", "total", "revenue", "spend", "spent", "sales"),
        ),
        "SELECT c.id, c.name, c.email, SUM(i.amount) AS total_amount FROM customers c "
        "JOIN invoices i ON c.id = i.customer_id GROUP BY c.id, c.name, c.email "
        "ORDER BY total_amount DESC LIMIT 5;",
    ),
    (
        (("top", "best", "popular"), ("product", "item")),
        "SELECT products.id, products.name, products.price, SUM(order_items.quantity) AS total_sold FROM products "
        "JOIN order_items ON products.id = order_items.product_id "
        "GROUP BY products.id, products.name, products.price ORDER BY total_sold DESC LIMIT 5;",
    ),
    (
        (("sales", "revenue", "income"), ("month",)),
        "SELECT DATE_FORMAT(created_at, '%Y-%m') AS month, SUM(amount) AS total_sales FROM invoices "
        "GROUP BY month ORDER BY month DESC LIMIT 12;",
    ),
    (
        (("sales", "revenue", "income"), ("year", "annual")),
        "SELECT YEAR(created_at) AS year, SUM(amount) AS total_sales FROM invoices GROUP BY year ORDER BY year DESC;",
    ),
    (
        (("sales", "revenue", "income"),),
        "SELECT DATE_FORMAT(created_at, '%Y-%m-%d') AS date, SUM(amount) AS daily_sales FROM invoices "
        "GROUP BY date ORDER BY date DESC LIMIT 30;",
    ),
    (
        (("how many", "count", "total number"), ("customer", "client")),
        "SELECT COUNT(*) AS total_customers FROM customers;",
    ),
    (
        (("how many", "count", "total number"), ("product", "item")),
        "SELECT COUNT(*) AS total_products FROM products;",
    ),
    (
        (("how many", "count", "total number"), ("order", "invoice")),
        "SELECT COUNT(*) AS total_orders FROM orders;",
    ),
    (
        (("recent", "latest", "last"), ("order", "purchase")),
        "SELECT id, customer_id, amount, created_at FROM orders ORDER BY created_at DESC LIMIT 10;",
    ),
    (
        (("recent", "latest", "last"), ("customer", "client")),
        "SELECT id, name, email, created_at FROM customers ORDER BY created_at DESC LIMIT 10;",
    ),
    (
        (("schema", "table", "column", "field", "structure"),),
        "SELECT table_name, column_name, data_type FROM information_schema.columns "
        "WHERE table_schema = DATABASE() ORDER BY table_name, ordinal_position LIMIT 20;",
    ),
]


def fallback_query(question: str) -> str:
    """Pick a canned query for the question, or the generic message query."""
    text = (question or "").lower()
    for groups, sql in FALLBACK_RULES:
        if all(any(word in text for word in group) for group in groups):
            logger.info("MYSQL FALLBACK | using canned query: %s", sql)
            return sql
    logger.info("MYSQL FALLBACK | no rule matched, using generic query")
    return GENERIC_FALLBACK_SQL
