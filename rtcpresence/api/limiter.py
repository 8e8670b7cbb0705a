from slowapi import Limiter
from slowapi.util import get_remote_address

# attached to app.state in routes.py; memory storage, per client address
limiter = Limiter(key_func=get_remote_address)
