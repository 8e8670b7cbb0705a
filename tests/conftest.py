import os

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time; configure before the app is imported.
os.environ['AGORA_APP_ID'] = 'testappid'
os.environ['AGORA_APP_CERTIFICATE'] = 'testcert'
os.environ['TOKEN_RATE_LIMIT'] = '1000/minute'
os.environ['REDIS_URL'] = ''


@pytest.fixture
def client():
    from rtcpresence.main import app

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
