import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ.setdefault('OPENAI_API_KEY', 'sk-test-key')
# module-level settings are read at import time
os.environ['OPENAI_RETRY_MULTIPLIER'] = '0'
os.environ['REDIS_ENABLED'] = 'false'
os.environ['LOG_FILE_PATH'] = ''

from studyflow.jobs import JobQueue  # noqa: E402
from studyflow.semantic import LLMGateway  # noqa: E402
from studyflow.storage import StudyStore  # noqa: E402
from tests.fixtures.mock_openai import FakeOpenAI  # noqa: E402
from tests.fixtures.mock_redis import MockRedisClient  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons():
    LLMGateway._instance = None
    StudyStore._instance = None
    JobQueue._instance = None
    yield
    LLMGateway._instance = None
    StudyStore._instance = None
    JobQueue._instance = None


@pytest.fixture
def fake_openai():
    client = FakeOpenAI()
    LLMGateway._instance = LLMGateway(client=client)
    return client


@pytest.fixture
def gateway(fake_openai):
    return LLMGateway.get_instance()


@pytest.fixture
def store():
    StudyStore._instance = StudyStore()
    return StudyStore._instance


@pytest.fixture
def queue():
    JobQueue._instance = JobQueue()
    return JobQueue._instance


@pytest.fixture
def mock_redis():
    return MockRedisClient()


@pytest.fixture
def api_client(store, queue):
    from fastapi.testclient import TestClient
    import main as service_main
    return TestClient(service_main.app)


@pytest.fixture
def auth_headers():
    return {'X-User-Id': 'user-1'}
