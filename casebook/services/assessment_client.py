"""Client for the external assessment provider.

Usage:
    from casebook.services.assessment_client import load_user_assessment

    data = await load_user_assessment("parent@example.com")
    # data is an AssessmentData with skills -> indicators -> activities

The provider answers a form POST with every activity assigned to the user.
Only activities of the configured expert category are kept; they are grouped
by exact skill name, then exact indicator name, in first-seen order.
Transport errors are retried; a non-success status is not.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from casebook.config import settings
from casebook.models.session import ApiActivity, ApiIndicator, ApiSkill, AssessmentData, AssessmentUser

logger = logging.getLogger(__name__)

UNKNOWN_SKILL = "Unknown Skill"

_LEADING_NUMBER_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class AssessmentProviderError(RuntimeError):
    """The provider could not be reached or answered with a failure."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


def _to_number(value: Any) -> float:
    """Leading numeric prefix of ``value``; 0 when there is none."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return value
    match = _LEADING_NUMBER_RE.match(str(value))
    return float(match.group(0)) if match else 0


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


def _to_activity(raw: Dict[str, Any]) -> ApiActivity:
    return ApiActivity(
        key=_to_text(raw.get("key")),
        name=_to_text(raw.get("name")),
        objective=_to_text(raw.get("objective")),
        instructions=_to_text(raw.get("instructions")),
        materials=_to_text(raw.get("materials")),
        level=_to_number(raw.get("level")),
        level_score=_to_number(raw.get("level_score")),
        f_target=_to_text(raw.get("fTarget")),
        f_target_value=_to_number(raw.get("fTargetValue")),
        i_target=_to_text(raw.get("iTarget")),
        i_target_value=_to_number(raw.get("iTargetValue")),
        s_target=_to_text(raw.get("sTarget")),
        s_target_value=_to_number(raw.get("sTargetValue")),
    )


def _name_of(ref: Any) -> Any:
    return ref.get("name") if isinstance(ref, dict) else None


def group_activities(activities: List[Dict[str, Any]], activity_type: Optional[str] = None) -> List[ApiSkill]:
    """Filter to the expert category and group into skill -> indicator -> activities."""
    wanted = activity_type or settings.expert_activity_type
    grouped: Dict[str, Dict[str, List[ApiActivity]]] = {}

    for raw in activities:
        if not isinstance(raw, dict) or raw.get("activity_type") != wanted:
            continue
        skill_name = _to_text(_name_of(raw.get("skill"))) or UNKNOWN_SKILL
        indicator_name = _to_text(_name_of(raw.get("indicator")))
        indicators = grouped.setdefault(skill_name, {})
        indicators.setdefault(indicator_name, []).append(_to_activity(raw))

    return [
        ApiSkill(
            skill_name=skill_name,
            indicators=[
                ApiIndicator(indicator_name=indicator_name, activities=acts)
                for indicator_name, acts in indicators.items()
            ],
        )
        for skill_name, indicators in grouped.items()
    ]


def build_assessment_data(payload: Dict[str, Any]) -> AssessmentData:
    """Translate the provider's response body into the grouped taxonomy."""
    body = payload.get("data")
    if not isinstance(body, dict):
        body = {}
    activities = body.get("activities")
    if not isinstance(activities, list):
        activities = []
    skills = group_activities(activities)
    expert_count = sum(len(a.activities) for s in skills for a in s.indicators)
    user = body.get("user")
    return AssessmentData(
        success=True,
        user=AssessmentUser.model_validate(user) if user else None,
        skills=skills,
        raw_activities_count=len(activities),
        expert_activities_count=expert_count,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    before_sleep=lambda retry_state: logger.warning(
        "Assessment provider call failed (attempt %d), retrying: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    ),
    reraise=True,
)
async def _post_email(email: str, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.Response:
    async with httpx.AsyncClient(
        timeout=settings.assessment_timeout,
        transport=transport,
        follow_redirects=True,
    ) as client:
        return await client.post(settings.assessment_api_url, data={"email": email})


async def load_user_assessment(
    email: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AssessmentData:
    """Fetch and group the taxonomy for ``email``.

    Raises AssessmentProviderError on transport failure, a non-success
    status or an unreadable body.
    """
    logger.info("Fetching assessment for email: %s", email)
    try:
        response = await _post_email(email, transport)
    except httpx.HTTPError as exc:
        raise AssessmentProviderError(f"Assessment provider unreachable: {exc}") from exc

    if not response.is_success:
        logger.error("Assessment provider returned status: %d", response.status_code)
        # 3xx left over after redirects maps to 502
        status_code = response.status_code if response.status_code >= 400 else 502
        raise AssessmentProviderError("Failed to fetch assessment data", status_code=status_code)

    try:
        payload = response.json()
    except ValueError as exc:
        raise AssessmentProviderError("Assessment provider returned invalid JSON") from exc

    if not isinstance(payload, dict):
        raise AssessmentProviderError("Assessment provider returned an unexpected body")
    try:
        data = build_assessment_data(payload)
    except ValidationError as exc:
        logger.error("Assessment provider body did not validate: %s", exc)
        raise AssessmentProviderError("Assessment provider returned an unexpected body") from exc
    logger.info(
        "Received %d activities, %d expert activities",
        data.raw_activities_count,
        data.expert_activities_count,
    )
    return data


class TaxonomyCache:
    """Reuse a fetched taxonomy per email for ``ttl`` seconds."""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = settings.assessment_cache_ttl if ttl is None else ttl
        self._entries: Dict[str, Tuple[float, AssessmentData]] = {}

    def get(self, email: str) -> Optional[AssessmentData]:
        hit = self._entries.get(email)
        if hit is None:
            return None
        stored_at, data = hit
        if time.monotonic() - stored_at > self.ttl:
            del self._entries[email]
            return None
        return data

    def put(self, email: str, data: AssessmentData) -> None:
        now = time.monotonic()
        for stale in [e for e, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl]:
            del self._entries[stale]
        self._entries[email] = (now, data)

    async def fetch(self, email: str, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> AssessmentData:
        cached = self.get(email)
        if cached is not None:
            return cached
        data = await load_user_assessment(email, transport=transport)
        self.put(email, data)
        return data
