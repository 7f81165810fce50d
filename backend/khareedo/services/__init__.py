from khareedo.services.pricing import normalize_price, calculate_discount, live_discount, calculate_emi
from khareedo.services.inventory import normalize_configurations, count_available
from khareedo.services.similarity import rank_similar
from khareedo.services.group_buy import group_buy_progress
from khareedo.services.roles import seed_roles

__all__ = [
    "normalize_price",
    "calculate_discount",
    "live_discount",
    "calculate_emi",
    "normalize_configurations",
    "count_available",
    "rank_similar",
    "group_buy_progress",
    "seed_roles",
]
