"""Prometheus metrics for the step rewards engine"""
from prometheus_client import Counter, Gauge, Histogram

# Counters
samples_processed = Counter(
    'step_rewards_samples_processed_total',
    'Total step samples ingested by outcome',
    ['outcome', 'reason'],
)

tier_advances = Counter(
    'step_rewards_tier_advances_total',
    'Total tier advancements',
    ['to_tier'],
)

redemptions = Counter(
    'step_rewards_redemptions_total',
    'Total redemption attempts by status',
    ['status'],
)

storage_failures = Counter(
    'step_rewards_storage_failures_total',
    'Total storage calls that timed out or failed',
    ['operation'],
)

notification_failures = Counter(
    'step_rewards_notification_failures_total',
    'Total notifications that could not be dispatched',
)

rollover_runs = Counter(
    'step_rewards_rollover_runs_total',
    'Total rollover runs',
)

entries_sealed = Counter(
    'step_rewards_entries_sealed_total',
    'Total daily ledger entries sealed by rollover',
)

entries_forfeited = Counter(
    'step_rewards_entries_forfeited_total',
    'Total unredeemed ledger entries forfeited by rollover',
)

# Histograms
fraud_scores = Histogram(
    'step_rewards_fraud_score',
    'Fraud score of scored samples',
    buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
)

ingest_duration = Histogram(
    'step_rewards_ingest_duration_seconds',
    'Time spent ingesting one sample',
)

# Gauges
active_user_locks = Gauge(
    'step_rewards_active_user_locks',
    'Number of users with in-flight work',
)
