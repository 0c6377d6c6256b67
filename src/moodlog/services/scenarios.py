"""Generation scenarios: prompt, model choice and how a payload is persisted."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from moodlog.llm import prompts
from moodlog.services.storage import Record


PayloadMerger = Callable[[Record, Dict[str, Any]], Record]

ENTRIES_TABLE = "entries"
ENTRY_CONTENTS_TABLE = "entry_contents"

ENTRY_SUMMARY_FIELDS = (
    "language",
    "icon",
    "content_type",
    "title",
    "summary",
    "summary_en",
    "tags",
    "is_reflective",
    "reflection_types",
    "reflection_explanation",
    "key_quotes",
    "insight_path",
    "analogy",
)

ANALYSED_STATUS = "analysed"


@dataclass(frozen=True)
class CommitTarget:
    """Where a parsed payload is written: one record, optionally owner-scoped."""

    table: str
    record_id: str
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class Scenario:
    """
    One kind of generation request.

    Scenarios without a table stream only; their transcript is never
    extracted or persisted.
    """

    name: str
    system_prompt: str
    table: Optional[str] = None
    merge: Optional[PayloadMerger] = None
    use_reasoning_model: bool = False

    @property
    def persists(self) -> bool:
        return self.table is not None and self.merge is not None

    def target(self, record_id: Optional[str], owner_id: Optional[str] = None) -> Optional[CommitTarget]:
        if not self.persists or not record_id:
            return None
        return CommitTarget(table=self.table, record_id=record_id, owner_id=owner_id)


def merge_emotion_analysis(record: Record, payload: Dict[str, Any]) -> Record:
    """Merge the analysis into ``analysis_data``, keeping keys it does not set."""
    analysis = dict(record.get("analysis_data") or {})
    analysis.update(payload)
    record["analysis_data"] = analysis
    return record


def merge_advice(record: Record, payload: Dict[str, Any]) -> Record:
    """Replace ``analysis_data.encouragement_and_suggestions`` with the responses."""
    responses = payload.get("responses")
    if not isinstance(responses, list):
        return record

    suggestions = [
        {"type": item.get("type"), "content": item.get("content")}
        for item in responses
        if isinstance(item, dict)
    ]

    analysis = dict(record.get("analysis_data") or {})
    analysis["encouragement_and_suggestions"] = suggestions
    record["analysis_data"] = analysis
    return record


def merge_entry_summary(record: Record, payload: Dict[str, Any]) -> Record:
    """Copy the summary fields present in the payload and mark the item analysed."""
    for field in ENTRY_SUMMARY_FIELDS:
        if field in payload:
            record[field] = payload[field]
    record["status"] = ANALYSED_STATUS
    return record


EMOTION = Scenario(
    name="emotion",
    system_prompt=prompts.with_json_rules(prompts.EMOTION_ANALYSIS_PROMPT),
    table=ENTRIES_TABLE,
    merge=merge_emotion_analysis,
)

ADVICE = Scenario(
    name="advice",
    system_prompt=prompts.with_json_rules(prompts.ADVICE_PROMPT),
    table=ENTRIES_TABLE,
    merge=merge_advice,
    use_reasoning_model=True,
)

ENTRY_SUMMARY = Scenario(
    name="entry_summary",
    system_prompt=prompts.with_json_rules(prompts.ENTRY_SUMMARY_PROMPT),
    table=ENTRY_CONTENTS_TABLE,
    merge=merge_entry_summary,
)

DEEPER = Scenario(
    name="deeper",
    system_prompt=prompts.DEEPER_PROMPT,
)

SCENARIOS: Dict[str, Scenario] = {
    scenario.name: scenario for scenario in (EMOTION, ADVICE, ENTRY_SUMMARY, DEEPER)
}


def get_scenario(name: str) -> Scenario:
    """
    Look up a scenario by name.

    Raises:
        ValueError: If no scenario has that name
    """
    try:
        return SCENARIOS[name]
    except KeyError:
        raise ValueError(
            f"Unknown scenario {name!r}. Must be one of: {', '.join(sorted(SCENARIOS))}"
        )


def _join(values: Any) -> str:
    if isinstance(values, str):
        return values.strip()
    return ",".join(str(value).strip() for value in values)


def shape_entry_contents(entry_contents: Optional[Iterable[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    Reduce stored entry contents to the fields the journal prompts use.

    ``summary`` is preferred over ``summary_en``; tags and reflection types
    become comma-joined strings; key quotes keep only the quote text.
    """
    shaped = []
    for item in entry_contents or []:
        if not isinstance(item, dict):
            continue

        entry: Dict[str, Any] = {}
        if item.get("euuid"):
            entry["euuid"] = item["euuid"]
        if item.get("summary"):
            entry["summary"] = item["summary"]
        elif item.get("summary_en"):
            entry["summary_en"] = item["summary_en"]
        if item.get("tags"):
            entry["tags"] = _join(item["tags"])
        if item.get("reflection_explanation"):
            entry["reflection_explanation"] = item["reflection_explanation"]
        if item.get("reflection_types"):
            entry["reflection_types"] = _join(item["reflection_types"])
        if item.get("key_quotes"):
            entry["key_quotes"] = [
                str(quote.get("quote", "")).strip()
                for quote in item["key_quotes"]
                if isinstance(quote, dict)
            ]
        shaped.append(entry)

    return shaped


def build_journal_input(entry_contents: Optional[Iterable[Dict[str, Any]]], language: str) -> str:
    """Serialize a day's entries as the user message for emotion and advice."""
    return prompts.serialize_input(language, shape_entry_contents(entry_contents))
