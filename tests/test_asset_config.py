from services.assets.config import load_extraction_settings, load_storage_settings
from services.assets.dynamo_store import DynamoAssetRepository
from services.assets.factory import build_repository
from services.assets.s3_store import S3AssetRepository
from services.assets.sql_store import SqlAssetRepository


def test_storage_settings_defaults():
    settings = load_storage_settings({})
    assert settings.backend == "sql"
    assert settings.s3_prefix == "assets/"
    assert settings.timeout == 15.0
    assert settings.site_rule is True
    assert settings.missing_for_backend() == []


def test_storage_settings_from_env():
    settings = load_storage_settings(
        {
            "ASSET_BACKEND": "S3",
            "ASSET_S3_BUCKET": " inventory ",
            "ASSET_S3_REGION": "eu-west-1",
            "ASSET_STORAGE_TIMEOUT": "5",
            "ASSET_SITE_RULE": "off",
        }
    )
    assert settings.backend == "s3"
    assert settings.s3_bucket == "inventory"
    assert settings.dynamo_region == "eu-west-1"
    assert settings.timeout == 5.0
    assert settings.site_rule is False
    assert settings.missing_for_backend() == ["ASSET_S3_ACCESS_KEY", "ASSET_S3_SECRET_KEY"]


def test_unknown_backend_falls_back_to_sql():
    assert load_storage_settings({"ASSET_BACKEND": "mongo"}).backend == "sql"


def test_extraction_settings_accept_either_key_name():
    assert load_extraction_settings({"API_KEY": "abc"}).api_key == "abc"
    settings = load_extraction_settings({"GEMINI_API_KEY": "g", "API_KEY": "a", "GEMINI_API_BASE": "https://x/v1/"})
    assert settings.api_key == "g"
    assert settings.api_base == "https://x/v1"


def test_build_repository_picks_backend():
    s3 = build_repository(load_storage_settings({"ASSET_BACKEND": "s3", "ASSET_S3_BUCKET": "b"}))
    assert isinstance(s3, S3AssetRepository)
    assert s3.describe()["connected"] is False

    dynamo = build_repository(load_storage_settings({"ASSET_BACKEND": "dynamodb", "ASSET_DYNAMO_TABLE": "t"}))
    assert isinstance(dynamo, DynamoAssetRepository)
    assert dynamo.table_name == "t"

    sql = build_repository(load_storage_settings({"ASSET_SITE_RULE": "false"}))
    assert isinstance(sql, SqlAssetRepository)
    assert sql.site_rule is False
