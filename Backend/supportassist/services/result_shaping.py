"""
Result Shaping — turns the model's JSON text into the payload stored on a job.

Two shapes exist, chosen by job type:

* analysis  → summary, internal note, recommendation plan, knowledge base
              references, task queue
* response  → drafted customer reply (jargon rewritten, agent sign-off
              enforced) plus an internal note

Keys inside the shaped result follow the model's JSON contract (camelCase),
since the UI consumes them verbatim.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from supportassist.services.job_store import JobType
from supportassist.services.term_translator import translate_terms

logger = logging.getLogger(__name__)

ARTICLE_SNIPPET_LENGTH = 480

_TEAM_SIGNATURE = re.compile(r"Best regards,\s*\n\s*\nSupport Team", re.IGNORECASE)


class ResultParseError(ValueError):
    """Raised when model output cannot be turned into the expected shape."""


# ─── Parsing ─────────────────────────────────────────────────────────────────

def sanitise_json(payload: Optional[str]) -> Optional[str]:
    """Strip Markdown code fences the model sometimes wraps around JSON."""
    if not payload:
        return payload
    trimmed = payload.strip()
    if trimmed.startswith("```"):
        trimmed = re.sub(r"^```(?:json)?\s*", "", trimmed, flags=re.IGNORECASE)
        trimmed = re.sub(r"\s*```$", "", trimmed)
    return trimmed.strip()


def _load_object(text: str, label: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(sanitise_json(text) or "")
    except ValueError as e:
        raise ResultParseError(f"Failed to parse {label} response: {e}") from e
    if not isinstance(parsed, dict):
        raise ResultParseError(f"Failed to parse {label} response: expected a JSON object.")
    return parsed


def parse_analysis_response(text: str) -> Dict[str, Any]:
    parsed = _load_object(text, "analysis")
    if not parsed.get("summary") or not parsed.get("internalNote") or not parsed.get("recommendationPlan"):
        raise ResultParseError("Failed to parse analysis response: output missing required fields.")
    return parsed


def parse_final_response(text: str) -> Dict[str, Any]:
    parsed = _load_object(text, "final")
    if not parsed.get("emailDraft") or not parsed.get("internalNote"):
        raise ResultParseError("Failed to parse final response: missing emailDraft or internalNote.")
    return {**parsed, "emailDraft": translate_terms(parsed["emailDraft"])}


# ─── Normalisation ───────────────────────────────────────────────────────────

def normalise_recommendation_plan(plan: Optional[Dict[str, Any]]) -> Dict[str, List[Any]]:
    plan = plan if isinstance(plan, dict) else {}
    return {
        key: plan[key] if isinstance(plan.get(key), list) else []
        for key in ("customerSteps", "agentSteps", "toolSuggestions")
    }


def _search_field(result: Dict[str, Any], name: str, fallback_name: Optional[str] = None) -> str:
    metadata = result.get("metadata") or {}
    return metadata.get(name) or result.get(name) or (result.get(fallback_name) if fallback_name else None) or ""


def enrich_articles(articles: Optional[List[Any]], search_results: Optional[List[Dict[str, Any]]]) -> List[Dict[str, str]]:
    """
    Fill gaps in the model's article references from the retrieved search results.

    When the model cites nothing, the search results themselves become the list.
    """
    search_results = [r for r in (search_results or []) if isinstance(r, dict)]
    if not isinstance(articles, list) or not articles:
        return [
            {
                "title": _search_field(r, "title") or "Knowledge Base Article",
                "link": _search_field(r, "link"),
                "contentSnippet": _search_field(r, "content", "contentSnippet")[:ARTICLE_SNIPPET_LENGTH],
            }
            for r in search_results
        ]

    enriched = []
    for index, article in enumerate(articles):
        article = article if isinstance(article, dict) else {}
        fallback = search_results[index] if index < len(search_results) else {}
        enriched.append({
            "title": article.get("title") or _search_field(fallback, "title") or f"Article {index + 1}",
            "link": article.get("link") or _search_field(fallback, "link"),
            "contentSnippet": (
                article.get("contentSnippet")
                or article.get("content")
                or _search_field(fallback, "content", "contentSnippet")[:ARTICLE_SNIPPET_LENGTH]
            ),
        })
    return enriched


def ensure_agent_signature(draft: Optional[str], agent_name: Optional[str]) -> Optional[str]:
    if not draft:
        return draft
    name = (agent_name or "").strip()
    if not name:
        return draft

    desired = f"Best regards,\n\n{name}"
    if desired in draft:
        return draft
    if _TEAM_SIGNATURE.search(draft):
        return _TEAM_SIGNATURE.sub(desired, draft)
    return f"{draft.rstrip()}\n\n{desired}"


# ─── Shaping ─────────────────────────────────────────────────────────────────

def shape_result(job_type: Optional[JobType | str], output_text: str, auxiliary_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Build the stored result for a completed job.

    Raises:
        ResultParseError: the model output does not match the job type's contract.
    """
    aux = auxiliary_data or {}
    result: Dict[str, Any] = {"rawText": output_text}

    if job_type is not None and JobType(job_type) == JobType.ANALYSIS:
        parsed = parse_analysis_response(output_text)
        plan = normalise_recommendation_plan(parsed.get("recommendationPlan"))
        result.update({
            "summary": parsed["summary"],
            "internalNote": parsed["internalNote"],
            "recommendationPlan": plan,
            "knowledgeBaseArticles": enrich_articles(parsed.get("knowledgeBaseArticles"), aux.get("searchResults")),
            "taskQueue": parsed["taskQueue"] if isinstance(parsed.get("taskQueue"), list) else [],
            "toolSuggestions": plan["toolSuggestions"],
            "caseStatus": aux.get("caseStatus"),
        })
    else:
        parsed = parse_final_response(output_text)
        result.update({
            "emailDraft": ensure_agent_signature(parsed["emailDraft"], aux.get("agentName")),
            "internalNote": parsed["internalNote"],
            "caseStatus": aux.get("caseStatus"),
        })

    logger.debug(f"Shaped {job_type} result with keys {list(result.keys())}")
    return result
