"""
Prometheus metrics for the reservation service
"""

from prometheus_client import Counter, Histogram, Gauge

# Dialogue metrics
turns_processed_total = Counter(
    'reservations_turns_total',
    'Dialogue turns processed',
    ['state']
)

turn_duration = Histogram(
    'reservations_turn_duration_seconds',
    'Time spent processing one dialogue turn'
)

sessions_recreated_total = Counter(
    'reservations_sessions_recreated_total',
    'Sessions recreated from greeting after corruption',
    ['reason']
)

# Allocation metrics
reservation_outcomes = Counter(
    'reservations_reserve_outcomes_total',
    'Reserve attempts by outcome',
    ['reason']
)

reservations_cancelled_total = Counter(
    'reservations_cancelled_total',
    'Reservations cancelled'
)

# Advisory metrics
advisory_fallbacks_total = Counter(
    'reservations_advisory_fallbacks_total',
    'Neutral seating advisories substituted for failed weather lookups',
    ['cause']
)

active_sessions = Gauge(
    'reservations_active_sessions',
    'Sessions held by the in-memory session store'
)
