from slowapi import Limiter
from slowapi.util import get_remote_address

# Inbound limits for user-triggered endpoints. Never applied to the webhook:
# Strava must always get its 200.
limiter = Limiter(key_func=get_remote_address)
