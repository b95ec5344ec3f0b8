from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the repo root is on sys.path so `import dynamo_backend` works in tests.
ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

from dynamo_backend.session import SessionModel, make_database  # noqa: E402
from dynamo_backend.settings import Settings  # noqa: E402


@pytest.fixture
def sim_settings() -> Settings:
    return Settings(backend="simulated", app_name="unit-test")


@pytest.fixture
def real_settings() -> Settings:
    return Settings(
        backend="real",
        client_id="amzn1.application-oa2-client.test",
        table_name="dynamo-backend-test",
        app_name="unit-test",
        role_arn="arn:aws:iam::123456789012:role/dynamo-backend-test",
        aws_region="us-east-1",
    )


@pytest.fixture
def sim_db(sim_settings):
    return make_database(sim_settings)


@pytest.fixture
def real_db(real_settings):
    return make_database(real_settings)


@pytest.fixture
def model() -> SessionModel:
    return SessionModel()
