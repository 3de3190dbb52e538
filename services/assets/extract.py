import json
import logging

import requests

from services.assets.config import load_extraction_settings
from services.assets.errors import ConfigurationError, ExtractionError
from services.assets.records import AssetStatus
from services.http_utils import post_json_with_retry


logger = logging.getLogger("assettrack.extract")

STATUS_VALUES = [s.value for s in AssetStatus]

ASSET_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "model": {"type": "STRING", "description": "The model name or number of the asset"},
            "serialNumber": {"type": "STRING", "description": "The serial number"},
            "siteID": {"type": "STRING", "description": "The location or Site ID"},
            "country": {"type": "STRING", "description": "The country where the asset is located"},
            "comments": {"type": "STRING", "description": "Any remark about the asset"},
            "status": {
                "type": "STRING",
                "format": "enum",
                "enum": STATUS_VALUES,
                "description": "The status of the asset",
            },
        },
        "required": ["model", "serialNumber", "siteID", "country", "status"],
        "propertyOrdering": ["model", "serialNumber", "siteID", "country", "status", "comments"],
    },
}

EXTRACT_PROMPT = """Extract asset information from the following text.
The text may contain multiple assets.
Extract or infer the Country (e.g., "Germany", "UK", "USA") for each asset.
Infer the Status from the context if possible.
Valid statuses are: {statuses}.
If no specific status context is found, default to "Normal".

Text to process:
\"\"\"{text}\"\"\"
"""

REPORT_PROMPT = """You are an IT hardware inventory analyst.
Below is a JSON list of tracked assets with their model, site, country and
RMA status. Write a short report (at most 200 words) that points out:
- models with an unusual number of RMA cases,
- sites or countries with a concentration of problems,
- any recommended follow-up.

Assets:
{assets}
"""

MAX_REPORT_ASSETS = 500


class ExtractionClient:
    """Thin client for the hosted model used for AI-assisted entry."""

    def __init__(self, settings=None, session=None):
        self.settings = settings or load_extraction_settings()
        self.session = session

    def _url(self):
        return f"{self.settings.api_base}/models/{self.settings.model}:generateContent"

    def _generate(self, prompt, response_schema=None):
        if not self.settings.api_key:
            raise ConfigurationError("Extraction API key is not configured.")

        generation_config = {}
        if response_schema is not None:
            generation_config = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if generation_config:
            payload["generationConfig"] = generation_config

        try:
            data = post_json_with_retry(
                self._url(),
                payload,
                headers={"x-goog-api-key": self.settings.api_key},
                timeout=self.settings.timeout,
                session=self.session,
            )
        except (requests.RequestException, ValueError) as ex:
            logger.error("model call failed: %s", ex)
            raise ExtractionError("Failed to parse asset data using AI.") from ex

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as ex:
            logger.error("unexpected model response shape: %s", str(data)[:300])
            raise ExtractionError("Failed to parse asset data using AI.") from ex
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()

    def extract_assets(self, text):
        """
        Returns the raw candidate rows found in `text`. They still have to
        go through normalize_rows() like any spreadsheet row.
        """
        text = (text or "").strip()
        if not text:
            raise ExtractionError("No text supplied.")

        prompt = EXTRACT_PROMPT.format(statuses=", ".join(f'"{s}"' for s in STATUS_VALUES), text=text)
        raw = self._generate(prompt, response_schema=ASSET_SCHEMA)
        try:
            candidates = json.loads(raw) if raw else []
        except ValueError as ex:
            raise ExtractionError("Failed to parse asset data using AI.") from ex

        if isinstance(candidates, dict):
            candidates = candidates.get("assets") or [candidates]
        rows = [c for c in candidates if isinstance(c, dict)] if isinstance(candidates, list) else []
        if not rows:
            raise ExtractionError("No assets found in text.")
        logger.info("extracted %s candidate assets", len(rows))
        return rows

    def generate_report(self, records):
        if not records:
            return "No assets to analyze."
        sample = [
            {"model": r.model, "site": r.site, "country": r.country, "status": r.status.value}
            for r in list(records)[:MAX_REPORT_ASSETS]
        ]
        text = self._generate(REPORT_PROMPT.format(assets=json.dumps(sample)))
        if not text:
            raise ExtractionError("The model returned an empty report.")
        return text
