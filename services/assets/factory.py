from services.assets.config import load_storage_settings
from services.assets.dynamo_store import DynamoAssetRepository
from services.assets.s3_store import S3AssetRepository


def build_repository(settings=None, **overrides):
    """
    Repository for the configured backend. Nothing is contacted here;
    missing credentials surface as ConfigurationError on first use.
    """
    settings = settings or load_storage_settings()
    common = {"site_rule": settings.site_rule, "timeout": settings.timeout}
    common.update(overrides)

    if settings.backend == "s3":
        return S3AssetRepository(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            prefix=settings.s3_prefix,
            **common,
        )
    if settings.backend == "dynamodb":
        return DynamoAssetRepository(
            table_name=settings.dynamo_table,
            region=settings.dynamo_region,
            access_key=settings.dynamo_access_key,
            secret_key=settings.dynamo_secret_key,
            **common,
        )

    # imported here so the cloud backends work without the Flask models
    from services.assets.sql_store import SqlAssetRepository

    return SqlAssetRepository(**common)
