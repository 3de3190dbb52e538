import os
from dataclasses import dataclass


SUPPORTED_BACKENDS = ("s3", "dynamodb", "sql")
DEFAULT_BACKEND = "sql"


def _env_bool(value, default=True):
    if value is None or not str(value).strip():
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_float(value, default):
    try:
        return max(1.0, float(value))
    except (TypeError, ValueError):
        return default


def _env(environ, *names, default=""):
    for name in names:
        value = environ.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return default


@dataclass(frozen=True)
class StorageSettings:
    backend: str = DEFAULT_BACKEND
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_prefix: str = "assets/"
    dynamo_table: str = ""
    dynamo_region: str = "us-east-1"
    dynamo_access_key: str = ""
    dynamo_secret_key: str = ""
    timeout: float = 15.0
    site_rule: bool = True

    def missing_for_backend(self):
        """Names of the settings the selected backend still needs."""
        if self.backend == "s3":
            required = {
                "ASSET_S3_BUCKET": self.s3_bucket,
                "ASSET_S3_ACCESS_KEY": self.s3_access_key,
                "ASSET_S3_SECRET_KEY": self.s3_secret_key,
            }
        elif self.backend == "dynamodb":
            required = {
                "ASSET_DYNAMO_TABLE": self.dynamo_table,
                "ASSET_DYNAMO_ACCESS_KEY": self.dynamo_access_key,
                "ASSET_DYNAMO_SECRET_KEY": self.dynamo_secret_key,
            }
        else:
            required = {}
        return [name for name, value in required.items() if not value]


@dataclass(frozen=True)
class ExtractionSettings:
    api_key: str = ""
    model: str = "gemini-2.0-flash"
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 30.0


def load_storage_settings(environ=None):
    env = os.environ if environ is None else environ
    backend = _env(env, "ASSET_BACKEND", default=DEFAULT_BACKEND).lower()
    if backend not in SUPPORTED_BACKENDS:
        backend = DEFAULT_BACKEND

    return StorageSettings(
        backend=backend,
        s3_bucket=_env(env, "ASSET_S3_BUCKET"),
        s3_region=_env(env, "ASSET_S3_REGION", default="us-east-1"),
        s3_access_key=_env(env, "ASSET_S3_ACCESS_KEY"),
        s3_secret_key=_env(env, "ASSET_S3_SECRET_KEY"),
        s3_prefix=_env(env, "ASSET_S3_PREFIX", default="assets/"),
        dynamo_table=_env(env, "ASSET_DYNAMO_TABLE"),
        dynamo_region=_env(env, "ASSET_DYNAMO_REGION", "ASSET_S3_REGION", default="us-east-1"),
        dynamo_access_key=_env(env, "ASSET_DYNAMO_ACCESS_KEY"),
        dynamo_secret_key=_env(env, "ASSET_DYNAMO_SECRET_KEY"),
        timeout=_env_float(env.get("ASSET_STORAGE_TIMEOUT"), 15.0),
        site_rule=_env_bool(env.get("ASSET_SITE_RULE"), default=True),
    )


def load_extraction_settings(environ=None):
    env = os.environ if environ is None else environ
    return ExtractionSettings(
        api_key=_env(env, "GEMINI_API_KEY", "API_KEY"),
        model=_env(env, "GEMINI_MODEL", default="gemini-2.0-flash"),
        api_base=_env(
            env, "GEMINI_API_BASE", default="https://generativelanguage.googleapis.com/v1beta"
        ).rstrip("/"),
        timeout=_env_float(env.get("GEMINI_TIMEOUT"), 30.0),
    )
