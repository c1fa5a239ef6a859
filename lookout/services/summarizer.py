"""
Checkpoint classification and shipment summaries.

Backed by OpenAI chat completions in JSON mode when OPENAI_API_KEY is set.
Any failure falls back to deterministic rules, so callers always get an answer.
"""
import json
import logging
import os
from typing import Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from lookout import config
from lookout.schemas import (
    CheckpointClassification,
    ClaimEligibilityStatus,
    DeliverySummary,
    NormalizedType,
    Sentiment,
    StoredCheckpoint,
    SummaryContext,
)
from lookout.services.status_rules import mentions_delivery

logger = logging.getLogger(__name__)

# Checked after the delivered test in fallback_classification.
# (phrases in description, raw statuses, classification) - first match wins
FALLBACK_RULES: list[tuple[tuple[str, ...], tuple[str, ...], NormalizedType, str, Sentiment]] = [
    (("out for delivery",), ("outfordelivery",), NormalizedType.OFD, "Out for delivery", Sentiment.POSITIVE),
    (("delivery attempt", "notice left", "no access"), (), NormalizedType.ATTEMPT, "Delivery attempted", Sentiment.CONCERNING),
    (("unable to locate", "lost", "cannot be found"), ("exception", "undelivered"), NormalizedType.EXCEPTION, "Exception", Sentiment.CRITICAL),
    (("return", "rts", "refused"), (), NormalizedType.RETURN, "Returning to sender", Sentiment.CRITICAL),
    (("customs", "import", "export"), (), NormalizedType.CUSTOMS, "In customs", Sentiment.NEUTRAL),
    (("held", "available for pickup", "will call"), (), NormalizedType.HOLD, "Held at facility", Sentiment.CONCERNING),
    (("label created", "shipping label", "electronic info"), ("inforeceived",), NormalizedType.LABEL, "Label created", Sentiment.NEUTRAL),
    (("picked up", "accepted", "origin scan"), (), NormalizedType.PICKUP, "Picked up", Sentiment.POSITIVE),
    (("local", "post office", "destination"), (), NormalizedType.LOCAL, "At local facility", Sentiment.POSITIVE),
    (("arrived", "facility", "hub", "distribution"), (), NormalizedType.HUB, "At hub", Sentiment.NEUTRAL),
    (("transit", "departed", "processed"), ("transit",), NormalizedType.INTRANSIT, "In transit", Sentiment.NEUTRAL),
]

CLASSIFY_PROMPT = """You classify shipping carrier tracking events into standard categories.

For each input checkpoint return normalized_type, display_title and sentiment.

NORMALIZED TYPES (choose ONE):
- LABEL: Label created, shipping info sent (pre-shipment)
- PICKUP: Carrier picked up, origin scan, accepted at facility
- INTRANSIT: In transit, departed facility, en route between locations
- HUB: Arrived at sorting/distribution facility, processed at hub
- LOCAL: Arrived at local delivery facility, at destination post office
- OFD: Out for delivery
- DELIVERED: Delivered, left with resident, handed off
- ATTEMPT: Delivery attempt failed, no access, business closed
- EXCEPTION: Problem occurred - unable to locate, address issue, damaged
- RETURN: Return to sender, being returned
- CUSTOMS: Customs clearance, import/export scan
- HOLD: Held at facility, available for pickup, awaiting action

SENTIMENT: positive | neutral | concerning | critical

DISPLAY TITLE: 2-5 words, sentence case, no carrier branding.

Return JSON: {"checkpoints": [{"index": 0, "normalized_type": "HUB", "display_title": "At regional hub", "sentiment": "neutral"}]}"""

SUMMARY_PROMPT = """You are a shipping logistics expert helping e-commerce merchants handle delayed packages.

Return JSON with keys:
headline (2-5 words), summary (1-2 sentences), action (specific recommended merchant action),
sentiment (positive | neutral | concerning | critical), confidence (0-100).

Action options: "No action needed - package is progressing normally", "Monitor for 24-48 hours",
"Proactively message customer about delay", "Open carrier investigation", "Consider reshipment",
"File lost in transit claim"."""

TIMELINE_LENGTH = 10


def fallback_classification(description: Optional[str], status: Optional[str] = None) -> CheckpointClassification:
    desc = (description or "").lower()
    stat = (status or "").lower()
    if stat == "delivered" or mentions_delivery(desc):
        return CheckpointClassification(
            normalized_type=NormalizedType.DELIVERED, display_title="Delivered", sentiment=Sentiment.POSITIVE
        )
    for phrases, statuses, normalized_type, title, sentiment in FALLBACK_RULES:
        if any(p in desc for p in phrases) or stat in statuses:
            return CheckpointClassification(normalized_type=normalized_type, display_title=title, sentiment=sentiment)
    return CheckpointClassification(
        normalized_type=NormalizedType.INTRANSIT, display_title="In transit", sentiment=Sentiment.NEUTRAL
    )


def fallback_summary(context: SummaryContext) -> DeliverySummary:
    silent = context.days_since_last_scan or 0
    if context.status == ClaimEligibilityStatus.MISSED_WINDOW:
        return DeliverySummary(
            headline="Claim window closed",
            summary=f"No carrier scan for {silent} days; the filing window for a lost in transit claim has passed.",
            action="Consider reshipment",
            sentiment=Sentiment.CRITICAL,
        )
    if context.status == ClaimEligibilityStatus.ELIGIBLE:
        return DeliverySummary(
            headline="Likely lost",
            summary=f"No carrier scan for {silent} days. The shipment qualifies for a lost in transit claim.",
            action="File lost in transit claim",
            sentiment=Sentiment.CRITICAL,
        )
    if context.status == ClaimEligibilityStatus.AT_RISK:
        remaining = context.days_remaining
        if remaining is not None and remaining <= 5:
            return DeliverySummary(
                headline="Stalled in transit",
                summary=f"No carrier scan for {silent} days. Claim eligibility in {remaining} days if nothing moves.",
                action="Open carrier investigation",
                sentiment=Sentiment.CONCERNING,
            )
        return DeliverySummary(
            headline="Moving slowly",
            summary=f"Last carrier scan {silent} days ago. Monitoring for further activity.",
            action="Monitor for 24-48 hours",
            sentiment=Sentiment.CONCERNING,
        )
    return DeliverySummary(
        headline="On track",
        summary="Package is progressing normally.",
        action="No action needed - package is progressing normally",
        sentiment=Sentiment.POSITIVE,
    )


class SummarizerService:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Optional[OpenAI] = None):
        key = api_key or os.getenv("OPENAI_API_KEY")
        self.client = client or (OpenAI(api_key=key) if key else None)
        self.model = model or config.AI_MODEL
        if self.client is None:
            logger.info("[Summarizer] OPENAI_API_KEY not set, using rule-based fallbacks")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _complete_json(self, system_prompt: str, user_content: str) -> dict:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_object"},
            temperature=0.1,
        )
        content = response.choices[0].message.content
        if not isinstance(content, str):
            raise ValueError("Empty completion")
        parsed = json.loads(content)
        if not isinstance(parsed, dict):
            raise ValueError("Expected a JSON object")
        return parsed

    def classify_batch(self, checkpoints: list[StoredCheckpoint]) -> list[CheckpointClassification]:
        """One classification per input, in order. Items the model gets wrong use the rules."""
        fallbacks = [fallback_classification(cp.raw_description, cp.raw_status) for cp in checkpoints]
        if not checkpoints or not self.enabled:
            return fallbacks

        payload = [
            {
                "index": i,
                "carrier": cp.carrier,
                "description": cp.raw_description,
                "location": cp.raw_location,
                "status": cp.raw_status,
            }
            for i, cp in enumerate(checkpoints)
        ]
        try:
            data = self._complete_json(CLASSIFY_PROMPT, json.dumps(payload))
        except (OpenAIError, ValueError) as e:
            logger.warning(f"[Summarizer] Classification failed, using rules: {e}")
            return fallbacks

        results = list(fallbacks)
        for item in data.get("checkpoints") or []:
            if not isinstance(item, dict):
                continue
            index = item.get("index")
            if not isinstance(index, int) or not 0 <= index < len(results):
                continue
            try:
                results[index] = CheckpointClassification.model_validate(item)
            except ValidationError:
                logger.debug(f"[Summarizer] Invalid classification for index {index}, keeping rule result")
        return results

    def classify(self, checkpoint: StoredCheckpoint) -> CheckpointClassification:
        return self.classify_batch([checkpoint])[0]

    def summarize(self, context: SummaryContext) -> DeliverySummary:
        if not self.enabled:
            return fallback_summary(context)

        timeline = "\n".join(
            f"{cp.checkpoint_date[:10]} - [{cp.normalized_type.value if cp.normalized_type else 'UNKNOWN'}] "
            f"{cp.display_title or cp.raw_description}"
            for cp in context.checkpoints[:TIMELINE_LENGTH]
        ) or "No detailed tracking data available"
        user_content = (
            f"Tracking: {context.tracking_number or 'Unknown'}\n"
            f"Carrier: {context.carrier}\n"
            f"Claim status: {context.status.value if context.status else 'not tracked'}\n"
            f"Days since label: {context.days_since_label}\n"
            f"Days since last scan: {context.days_since_last_scan}\n"
            f"Days until claim eligible: {context.days_remaining}\n"
            f"Last scan: {context.last_scan_description or 'Unknown'} ({context.last_scan_date or 'Unknown'})\n\n"
            f"Recent tracking history:\n{timeline}"
        )
        try:
            data = self._complete_json(SUMMARY_PROMPT, user_content)
            data["confidence"] = max(0, min(100, int(data.get("confidence") or 70)))
            return DeliverySummary.model_validate(data)
        except (OpenAIError, ValueError, TypeError) as e:
            logger.warning(f"[Summarizer] Summary failed for {context.shipment_id}, using rules: {e}")
            return fallback_summary(context)
