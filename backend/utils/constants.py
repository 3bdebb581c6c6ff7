"""
Constants used throughout the application.
"""

# Aggregate counter thresholds
# Available if quantity > LOW_STOCK_THRESHOLD, Stock Low if 0 < quantity <= it
LOW_STOCK_THRESHOLD = 20

# Bounded retries for allocations that lose the conditional-update race
RACE_RETRY_ATTEMPTS = 3

# Unit Status Colors
# Using Tailwind CSS color palette for consistency
UNIT_STATUS_COLORS = {
    'IN_STOCK': '#10B981',    # Green-500 - Ready to allocate
    'ACQUIRED': '#3B82F6',    # Blue-500 - With a consumer
    'IN_REPAIR': '#F59E0B',   # Amber-500 - Out for repair
    'SCRAPPED': '#6B7280',    # Gray-500 - Terminal
    'LOST': '#EF4444',        # Red-500 - Terminal
}

# Unit Status Icons (optional, for frontend use)
UNIT_STATUS_ICONS = {
    'IN_STOCK': '📦',
    'ACQUIRED': '👤',
    'IN_REPAIR': '🔧',
    'SCRAPPED': '🗑️',
    'LOST': '❓',
}

# Product status colors (derived from quantity)
PRODUCT_STATUS_COLORS = {
    'Available': '#10B981',
    'Stock Low': '#F59E0B',
    'Stock Out': '#EF4444',
}

# Realtime group for stock change broadcasts
STOCK_EVENTS_GROUP = 'stock'
