# matrix/ai_assist.py
"""
Advisory AI helpers on top of Gemini: pre-filling a utility from a scanned
bill and writing a short report on a network tree. Both are best-effort and
never raise; a failure must not block manual entry.
"""
import json
import logging
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from matrix.entities import MatrixNode, UtilityType
from matrix.normalization import parse_utility_type

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
PROMPT_TREE_DEPTH = 4

EXTRACTION_PROMPT = """
Analyze this energy bill or supply contract and extract:
1. The supplier / provider name (e.g. Enel, Eni, A2A, Edison).
2. The supply type: "Electricity" or "Gas".

Reply ONLY with valid JSON in this format, no markdown and no explanations:
{"provider": "Name found", "type": "Electricity" or "Gas" or null}
If a value cannot be found use null or an empty string.
"""

ANALYSIS_PROMPT = """
You are an experienced network marketing analyst for the energy sector
(electricity and gas). Analyze the following forced 10x10 matrix.

Network data (simplified JSON):
{tree}

Write a strategic report (max 120 words):
1. Network health (people growth versus contracts/utilities produced).
2. Electricity versus gas mix, or saturation of personal utilities.
3. One tactical suggestion for member "{username}" to grow revenue.

Tone: energetic, professional, results oriented.
"""


def simplify_tree(node: MatrixNode, depth: int = 0) -> Dict[str, Any]:
    """Keep prompt size bounded: only structure, and nothing below PROMPT_TREE_DEPTH."""
    if depth > PROMPT_TREE_DEPTH:
        return {"summary": f"{node.total_downline} more members below"}
    return {
        "username": node.username,
        "level": node.level,
        "personalUtilities": len(node.utilities),
        "personalUtilityTypes": ", ".join(u.type.value for u in node.utilities),
        "directChildren": len(node.children),
        "totalDownline": node.total_downline,
        "totalGroupUtilities": node.total_utilities,
        "children": [simplify_tree(child, depth + 1) for child in node.children],
    }


def _strip_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


class GeminiAssistant:

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, client=None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._client or self.api_key)

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def extract_bill_data(self, document_bytes: bytes, mime_type: str) -> Dict[str, Any]:
        """Return {provider?, type?} on success or {error} on failure."""
        if not self.configured:
            return {"error": "AI API key not configured"}

        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=document_bytes, mime_type=mime_type),
                    EXTRACTION_PROMPT,
                ],
            )
        except Exception as e:
            logger.error(f"Bill extraction request failed: {e}")
            return {"error": "Document analysis failed"}

        text = response.text or "{}"
        try:
            data = json.loads(_strip_fences(text))
        except ValueError:
            logger.warning(f"Bill extraction returned non-JSON text: {text[:100]!r}")
            return {"error": "Invalid response format"}
        if not isinstance(data, dict):
            return {"error": "Invalid response format"}

        result = {}
        if data.get("provider"):
            result["provider"] = str(data["provider"]).strip()
        utility_type: Optional[UtilityType] = parse_utility_type(data.get("type"))
        if utility_type is not None:
            result["type"] = utility_type.value
        return result

    def analyze_network(self, node: MatrixNode) -> str:
        if not self.configured:
            return "AI API key not configured. Set GEMINI_API_KEY to enable network analysis."

        prompt = ANALYSIS_PROMPT.format(
            tree=json.dumps(simplify_tree(node), indent=2),
            username=node.username,
        )
        try:
            response = self.client.models.generate_content(model=self.model, contents=prompt)
        except Exception as e:
            logger.error(f"Network analysis request failed: {e}")
            return "An error occurred while analyzing the network."
        return response.text or "Analysis is not available right now."
