from datetime import timedelta

MIN_RENTAL_DURATION = timedelta(hours=2)
MAX_RENTAL_DAYS = 90
MAX_RENTAL_DURATION = timedelta(days=MAX_RENTAL_DAYS)
PICKUP_LEAD_TIME = timedelta(0)

VERIFICATION_TOKEN_TTL = timedelta(hours=24)
VERIFY_LINK_MAX_ATTEMPTS = 5
VERIFY_LINK_ATTEMPT_WINDOW = timedelta(minutes=15)

PENDING_TIMEOUT = timedelta(hours=1)
PENDING_GRACE_PERIOD = timedelta(minutes=15)
VERIFIED_UNPAID_TIMEOUT = timedelta(minutes=15)
DRAFT_RETENTION = timedelta(hours=24)
COMPLETED_RETENTION = timedelta(days=90)

CANCELLATION_CUTOFF = timedelta(hours=24)
AVAILABILITY_BUFFER = timedelta(hours=24)

SWEEP_INTERVAL_MINUTES = 1
SWEEP_LOCK_LEASE = timedelta(minutes=5)
CAR_LOCK_LEASE = timedelta(seconds=30)

TAX_PERCENTAGE = 20
