"""
Root-level conftest for all tests.

Settings are read from the environment the first time a module calls
get_settings(), and several modules do so at import time (the arq worker
among them). Defaults are exported here before anything is imported.
"""
import os

_TEST_ENV_DEFAULTS = {
    "POSTGRES_USER": "unit_test_user",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PASSWORD": "unit_test_password",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "unit_test_db",
    "REDIS_HOST": "localhost",
    "REDIS_PORT": "6379",
    "RATE_LIMIT_BACKEND": "memory",
    "JSON_LOGS": "false",
    "LOGLEVEL": "WARNING",
}

for _key, _value in _TEST_ENV_DEFAULTS.items():
    if not os.getenv(_key):
        os.environ[_key] = _value
