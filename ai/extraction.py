"""Whitelist-constrained extraction of catalog services from model output.

The generative model is only ever shown the ranked candidate subset, and is
told to pick zero or more of those ids. Its reply is parsed defensively,
and any id outside the whitelist is dropped before the result leaves this
module.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ai.generation import GenerationError, GenerativeClient
from intent.catalog import CatalogStore
from intent.models import (
    NO_MATCH_SUMMARY,
    Candidate,
    ConversationReply,
    ResolutionItem,
    ResolutionResult,
    ResolutionStatus,
)

logger = logging.getLogger(__name__)

SERVICES_BLOCK_RE = re.compile(r"<<<SERVICES>>>(.*?)(?:<<<END>>>|\Z)", re.DOTALL)
_FENCE_START_RE = re.compile(r"^```[\w-]*\s*")
_FENCE_END_RE = re.compile(r"\s*```$")
_NUMBER_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")
QUANTITY_KEYS = ("estimatedQuantity", "estimated_quantity", "quantity")

CHAT_FALLBACK_REPLY = "Sorry, I can't look up services right now. Please try again in a moment."


class ExtractionVariant(str, Enum):
    """Call sites that share the whitelist-and-validate pattern."""
    TEXT = "text_intent"
    IMAGE = "image_classification"
    DOCUMENT = "document_intent"
    CHAT = "chat_assistant"


@dataclass(frozen=True)
class VariantSpec:
    """Prompt wording and limits for one extraction variant."""
    role: str
    input_label: str
    summary_hint: str
    notes_hint: str
    max_items: int


VARIANTS: dict[ExtractionVariant, VariantSpec] = {
    ExtractionVariant.TEXT: VariantSpec(
        role="You are a home-improvement service assistant. The user described their project in their own words.",
        input_label="User text",
        summary_hint="one sentence describing what the user wants done",
        notes_hint="short recommendation from the point of view of the service company, or empty",
        max_items=5,
    ),
    ExtractionVariant.IMAGE: VariantSpec(
        role="You are an assistant that classifies home photos into catalog services.",
        input_label="Photo description",
        summary_hint="one sentence describing what is visible in the photo",
        notes_hint="next steps if there is an obvious issue, otherwise empty",
        max_items=3,
    ),
    ExtractionVariant.DOCUMENT: VariantSpec(
        role="You are an assistant that reads PDF documents (estimates, inspection reports, work orders) and suggests services.",
        input_label="PDF text",
        summary_hint="one sentence describing the work the documents ask for",
        notes_hint="short note about anything ambiguous in the documents, or empty",
        max_items=5,
    ),
    ExtractionVariant.CHAT: VariantSpec(
        role="You are a home improvement assistant for a home-services marketplace.",
        input_label="Conversation",
        summary_hint="",
        notes_hint="",
        max_items=5,
    ),
}


# ---------------------------------------------------------------------------
# Parsing untrusted output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParseSuccess:
    """Model output decoded to a JSON object."""
    payload: dict[str, Any]


@dataclass(frozen=True)
class ParseFailure:
    """Model output that could not be decoded; raw text kept for diagnostics."""
    raw_text: str
    reason: str


ParsedOutput = ParseSuccess | ParseFailure


def _strip_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = _FENCE_START_RE.sub("", s)
        s = _FENCE_END_RE.sub("", s)
    return s.strip()


def _balanced_object(text: str) -> str | None:
    """First balanced ``{...}`` slice of ``text``, string-literal aware."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def parse_model_output(text: str | None) -> ParsedOutput:
    """Decode model output into a JSON object without ever raising.

    Tries the whole (fence-stripped) text first, then the first balanced
    JSON object embedded in surrounding prose.
    """
    raw = text or ""
    if not raw.strip():
        return ParseFailure(raw_text=raw, reason="empty output")

    cleaned = _strip_fences(raw)
    for blob in (cleaned, _balanced_object(cleaned)):
        if not blob:
            continue
        try:
            decoded = json.loads(blob)
        except (ValueError, RecursionError):
            continue
        if isinstance(decoded, dict):
            return ParseSuccess(payload=decoded)

    return ParseFailure(raw_text=raw, reason="no JSON object found")


def coerce_quantity(value: Any) -> float:
    """Quantity as a non-negative float; anything unusable becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if not match:
            return 0.0
        number = float(match.group(0))
    else:
        return 0.0

    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _coerce_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


class RawItem(BaseModel):
    """One item as the model returned it; every field is optional."""
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    title: str = ""
    description: str = ""
    quantity: float = Field(
        default=0.0,
        validation_alias=AliasChoices(*QUANTITY_KEYS),
    )

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str | None:
        if isinstance(v, bool):
            return None
        if isinstance(v, (str, int)):
            return str(v).strip() or None
        return None

    @field_validator("title", "description", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def validate_quantity(cls, v: Any) -> float:
        return coerce_quantity(v)

    @classmethod
    def from_payload(cls, data: Any) -> RawItem | None:
        if not isinstance(data, dict):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None


class RawExtraction(BaseModel):
    """Top-level reply shape shared by all variants."""
    model_config = ConfigDict(extra="ignore")

    items: list[Any] = Field(default_factory=list, validation_alias=AliasChoices("items", "services"))
    summary: str = Field(default="", validation_alias=AliasChoices("summary", "description"))
    notes: str = Field(default="", validation_alias=AliasChoices("notes", "recommendation"))
    quantities: dict[str, Any] = Field(default_factory=dict)

    @field_validator("items", mode="before")
    @classmethod
    def validate_items(cls, v: Any) -> list[Any]:
        return v if isinstance(v, list) else []

    @field_validator("summary", "notes", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("quantities", mode="before")
    @classmethod
    def validate_quantities(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

def build_whitelist(candidates: Sequence[Candidate]) -> dict[str, str]:
    """Ordered id → title mapping of the candidates the model may use."""
    whitelist: dict[str, str] = {}
    for candidate in candidates:
        whitelist.setdefault(candidate.id, candidate.title)
    return whitelist


def format_whitelist(whitelist: dict[str, str]) -> str:
    return "\n".join(
        f"- id: {json.dumps(svc_id, ensure_ascii=False)}, title: {json.dumps(title, ensure_ascii=False)}"
        for svc_id, title in whitelist.items()
    )


def build_prompt(
    variant: ExtractionVariant,
    raw_input: str,
    candidates: Sequence[Candidate],
) -> tuple[str, str]:
    """System and user prompts for a structured extraction call.

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    spec = VARIANTS[variant]
    whitelist = format_whitelist(build_whitelist(candidates))
    system_prompt = f"""
{spec.role}
Suggest up to {spec.max_items} services from this list only.
Do NOT invent new IDs. Use an id only if it appears below and is relevant:

{whitelist}

Return ONLY valid JSON with the exact structure:
{{
  "items": [
    {{"id": "...", "title": "...", "description": "...", "estimatedQuantity": 0}}
  ],
  "summary": "{spec.summary_hint}",
  "notes": "{spec.notes_hint}"
}}

"estimatedQuantity" is an approximate number (area, piece count, hours) when the
input mentions one, otherwise 0. If no listed service applies, return an empty
"items" array. No extra text.
""".strip()
    user_prompt = f'{spec.input_label}: "{raw_input}"'
    return system_prompt, user_prompt


def build_conversation_prompt(
    candidates: Sequence[Candidate],
    catalog: CatalogStore | None,
    *,
    emergency: bool = False,
) -> str:
    """System prompt for the chat assistant, services block included."""
    lines = []
    for svc_id, title in build_whitelist(candidates).items():
        entry = catalog.get(svc_id) if catalog is not None else None
        description = entry.description if entry else ""
        price = entry.price if entry and entry.price is not None else 0
        lines.append(
            f"- id: {json.dumps(svc_id)}, title: {json.dumps(title)}, "
            f"description: {json.dumps(description)}, price: {price}"
        )
    if not lines:
        lines.append("No relevant services found for the user's query.")

    if emergency:
        preamble = """
You are an emergency home improvement assistant. The user has an urgent home-related problem.
1) Ask brief clarifying questions only if necessary, and never repeat a question.
2) Give immediate, concise steps to ensure safety or minimize damage.
3) Mention relevant services from the list below only by their title.
4) Express empathy at most once.
5) Suggest an inspection if it helps diagnose or prevent further damage.
""".strip()
    else:
        preamble = """
You are a home improvement assistant for a home-services marketplace.
Below is a list of real services. Use ONLY these exact IDs and titles if relevant.
Be concise.
""".strip()

    services = "\n".join(lines)
    return f"""
{preamble}
DO NOT invent new names or IDs. Do not show the block below in your normal text.
If you recommend services, append this block at the very end:

<<<SERVICES>>>
{{
  "services": [
    {{"id": "...", "title": "...", "description": "...", "estimatedQuantity": 0}}
  ]
}}
<<<END>>>

If no relevant service applies, say so and leave the block out.

Services:
{services}
""".strip()


def build_recommendation_prompt(user_text: str, candidates: Sequence[Candidate]) -> tuple[str, str]:
    """Prompts for a 1-2 sentence recommendation around ranked services."""
    services = "\n".join(f"- {c.title} (score: {c.score:.3f})" for c in candidates)
    system_prompt = """
You are a home-improvement assistant.
The user has described their project, and we have a set of recommended services.
Give a short (1-2 sentence) recommendation to the user, focusing on solutions and steps.
Do not name services that are not in the list.
""".strip()
    user_prompt = f"""
The user says: "{user_text}"

We found these relevant services:
{services}

Give a concise recommendation from our company's perspective, addressing how
these services could help solve the user's issue.
""".strip()
    return system_prompt, user_prompt


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile_items(
    raw_items: Sequence[Any],
    whitelist: dict[str, str],
    *,
    catalog: CatalogStore | None = None,
    quantities: dict[str, Any] | None = None,
    max_items: int | None = None,
) -> tuple[list[ResolutionItem], list[str]]:
    """Keep only whitelisted, de-duplicated items.

    Titles and prices always come from the catalog side, never the model.
    Ids are matched exactly; a misspelled or non-candidate id is rejected.

    Returns:
        Tuple of (accepted_items, rejected_ids)
    """
    accepted: list[ResolutionItem] = []
    rejected: list[str] = []
    seen: set[str] = set()
    quantities = quantities or {}

    for data in raw_items:
        raw = RawItem.from_payload(data)
        if raw is None or raw.id is None:
            continue
        item_id = raw.id
        if item_id not in whitelist:
            rejected.append(item_id)
            continue
        if item_id in seen:
            continue
        if max_items is not None and len(accepted) >= max_items:
            break
        seen.add(item_id)

        has_quantity = any(key in data for key in QUANTITY_KEYS)
        quantity = raw.quantity if has_quantity else coerce_quantity(quantities.get(item_id))
        entry = catalog.get(item_id) if catalog is not None else None
        accepted.append(ResolutionItem(
            id=item_id,
            title=whitelist[item_id],
            description=raw.description or (entry.description if entry else ""),
            estimated_quantity=quantity,
            price=entry.price if entry else None,
        ))

    return accepted, rejected


class ConstrainedExtractor:
    """Runs whitelist-constrained extraction against a generative model.

    The extraction methods never raise for model-side problems: API errors,
    timeouts, malformed output and whitelist violations all end in a
    well-formed result. ``recommend`` lets GenerationError through.
    """

    def __init__(
        self,
        generator: GenerativeClient,
        catalog: CatalogStore | None = None,
    ) -> None:
        self.generator = generator
        self.catalog = catalog

    def _build_result(
        self,
        parsed: ParseSuccess,
        whitelist: dict[str, str],
        candidates: Sequence[Candidate],
        raw_text: str,
        max_items: int,
    ) -> ResolutionResult:
        extraction = RawExtraction.model_validate(parsed.payload)
        items, rejected = reconcile_items(
            extraction.items,
            whitelist,
            catalog=self.catalog,
            quantities=extraction.quantities,
            max_items=max_items,
        )
        if rejected:
            logger.warning(f"Dropped {len(rejected)} non-whitelisted ids from model output: {rejected}")

        return ResolutionResult(
            items=tuple(items),
            summary=extraction.summary,
            notes=extraction.notes,
            status=ResolutionStatus.OK,
            candidates=tuple(candidates),
            raw_output=raw_text,
        )

    async def extract(
        self,
        raw_input: str,
        candidates: Sequence[Candidate],
        variant: ExtractionVariant = ExtractionVariant.TEXT,
    ) -> ResolutionResult:
        """Select services for ``raw_input`` from ``candidates`` only.

        Args:
            raw_input: Query text (user text, photo description, or PDF text)
            candidates: Ranked candidates; their ids form the whitelist
            variant: Call site, controls wording and item limit

        Returns:
            ResolutionResult whose item ids are all members of the whitelist
        """
        if not candidates:
            return ResolutionResult.empty(ResolutionStatus.NO_MATCH, summary=NO_MATCH_SUMMARY)

        spec = VARIANTS[variant]
        whitelist = build_whitelist(candidates)
        system_prompt, user_prompt = build_prompt(variant, raw_input, candidates)

        try:
            raw_text = await self.generator.generate(
                system_prompt,
                user_prompt,
                schema_hint=variant.value,
            )
        except GenerationError as e:
            logger.warning(f"Extraction ({variant.value}) failed, returning empty result: {e}")
            return ResolutionResult.empty(ResolutionStatus.DEGRADED, candidates=tuple(candidates))

        parsed = parse_model_output(raw_text)
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Could not parse model output ({parsed.reason}): {parsed.raw_text[:500]!r}")
            return ResolutionResult.empty(
                ResolutionStatus.DEGRADED,
                raw_output=parsed.raw_text,
                candidates=tuple(candidates),
            )

        result = self._build_result(parsed, whitelist, candidates, raw_text, spec.max_items)
        logger.info(
            f"Extraction ({variant.value}) selected {len(result.items)} of {len(whitelist)} candidates"
        )
        return result

    async def extract_conversation(
        self,
        messages: Sequence[dict[str, str]],
        candidates: Sequence[Candidate],
        *,
        emergency: bool = False,
    ) -> ConversationReply:
        """Chat reply plus whitelisted services parsed from its services block."""
        whitelist = build_whitelist(candidates)
        system_prompt = build_conversation_prompt(candidates, self.catalog, emergency=emergency)

        try:
            output = await self.generator.generate(system_prompt, messages=messages, max_tokens=600)
        except GenerationError as e:
            logger.warning(f"Chat generation failed: {e}")
            return ConversationReply(
                reply=CHAT_FALLBACK_REPLY,
                result=ResolutionResult.empty(ResolutionStatus.DEGRADED, candidates=tuple(candidates)),
            )

        match = SERVICES_BLOCK_RE.search(output)
        reply = SERVICES_BLOCK_RE.sub("", output).strip()
        if match is None:
            status = ResolutionStatus.OK if candidates else ResolutionStatus.NO_MATCH
            return ConversationReply(
                reply=reply,
                result=ResolutionResult.empty(status, raw_output=output, candidates=tuple(candidates)),
            )

        parsed = parse_model_output(match.group(1))
        if isinstance(parsed, ParseFailure):
            logger.warning(f"Could not parse services block ({parsed.reason}): {parsed.raw_text[:500]!r}")
            return ConversationReply(
                reply=reply,
                result=ResolutionResult.empty(
                    ResolutionStatus.DEGRADED,
                    raw_output=output,
                    candidates=tuple(candidates),
                ),
            )

        result = self._build_result(parsed, whitelist, candidates, output, VARIANTS[ExtractionVariant.CHAT].max_items)
        return ConversationReply(reply=reply, result=result)

    async def recommend(self, user_text: str, candidates: Sequence[Candidate]) -> str:
        """One or two sentences of advice written around ``candidates``.

        Raises:
            GenerationError: If the model call fails
        """
        system_prompt, user_prompt = build_recommendation_prompt(user_text, candidates)
        output = await self.generator.generate(system_prompt, user_prompt, max_tokens=300)
        return output.strip()
