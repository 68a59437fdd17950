# Complaint classification: OpenAI first, keyword scoring as the fallback

import asyncio
import json
import logging
import re
from typing import Dict, List, Optional, Tuple

import openai as openai_mod
from openai import AsyncOpenAI

from .config import OPENAI_API_KEY, OPENAI_MODEL, now_utc
from .models import (
    Category, CATEGORY_DEPARTMENT, Classification, ClassificationMethod, Department, Priority,
)

logger = logging.getLogger(__name__)

openai_client: Optional[AsyncOpenAI] = AsyncOpenAI(api_key=OPENAI_API_KEY) if OPENAI_API_KEY else None

# ---------------------------------------------------------------------------
# AI Helpers: Retry, Truncation
# ---------------------------------------------------------------------------
def truncate_text(text: str, max_chars: int = 3000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."

async def openai_chat(messages: list, json_mode: bool = False, max_retries: int = 3) -> Optional[str]:
    if openai_client is None:
        return None
    kwargs = {}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    for attempt in range(max_retries):
        try:
            resp = await openai_client.chat.completions.create(
                model=OPENAI_MODEL, messages=messages, **kwargs)
            return resp.choices[0].message.content.strip()
        except (openai_mod.RateLimitError, openai_mod.APIConnectionError) as e:
            logger.warning("OpenAI retry %d: %s", attempt + 1, e)
            if attempt == max_retries - 1:
                raise
            await asyncio.sleep(2 ** attempt)
        except Exception as e:
            logger.error("OpenAI error: %s", e)
            return None
    return None

# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------
C = Category

CATEGORY_KEYWORDS: Dict[Category, List[str]] = {
    C.FIRE_SAFETY: ["fire", "smoke", "blaze", "flames", "burning", "explosion",
                    "gas leak", "cylinder", "short circuit", "fire extinguisher"],
    C.ROAD_INFRASTRUCTURE: ["road", "pothole", "footpath", "pavement", "bridge", "flyover",
                            "speed breaker", "divider", "asphalt", "crack", "construction"],
    C.WATER_SUPPLY: ["water", "pipeline", "tap", "leak", "leakage", "supply", "tanker",
                     "borewell", "contaminated", "drinking", "low pressure"],
    C.ELECTRICITY: ["electricity", "power", "outage", "transformer", "voltage", "wire",
                    "electric", "meter", "power cut", "shock"],
    C.SANITATION: ["garbage", "waste", "trash", "sewage", "drain", "drainage", "dustbin",
                   "toilet", "stink", "smell", "overflow", "manhole", "dump"],
    C.TRAFFIC_TRANSPORTATION: ["traffic", "signal", "parking", "jam", "congestion", "bus",
                               "zebra crossing", "vehicle", "accident", "towing"],
    C.HEALTH_SAFETY: ["hospital", "medical", "health", "clinic", "disease", "dengue",
                      "mosquito", "ambulance", "doctor", "epidemic", "stray dog"],
    C.EDUCATION: ["school", "teacher", "college", "student", "classroom", "education",
                  "midday meal", "anganwadi"],
    C.REVENUE_TAX: ["tax", "property", "revenue", "assessment", "mutation", "bill",
                    "receipt", "registration"],
    C.URBAN_PLANNING: ["encroachment", "illegal construction", "building plan", "zoning",
                       "layout", "permit", "unauthorized"],
    C.ENVIRONMENT: ["park", "tree", "garden", "pollution", "noise", "plantation",
                    "greenery", "lake", "burning leaves"],
    C.STREET_LIGHTING: ["streetlight", "street light", "lamp post", "dark street",
                        "light not working", "lamp"],
}

PRIORITY_KEYWORDS: List[Tuple[Priority, List[str]]] = [
    (Priority.CRITICAL, ["emergency", "fire", "explosion", "collapse", "electrocution",
                         "gas leak", "life threatening", "death", "injured", "flood"]),
    (Priority.HIGH, ["urgent", "danger", "dangerous", "pothole", "leak", "no water",
                     "outage", "power cut", "sewage", "overflow", "hospital", "accident",
                     "contaminated", "children"]),
    (Priority.LOW, ["suggestion", "request", "minor", "information", "inquiry",
                    "beautification", "park", "tax"]),
]

STOP_WORDS = frozenset("""
    the a an and or but in on at to for of with by from is are was were be been being
    have has had do does did will would could should this that these those there their
    them they then than very also just near into over about after before since from
    please sir madam kindly since here when where which while what
""".split())

_WORD_RE = re.compile(r"[a-z]+")

def _hits(keyword: str, text: str) -> int:
    return len(re.findall(r"\b" + re.escape(keyword) + r"\b", text))

def extract_keywords(text: str, limit: int = 8) -> List[str]:
    seen: List[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if len(word) > 3 and word not in STOP_WORDS and word not in seen:
            seen.append(word)
            if len(seen) == limit:
                break
    return seen

def keyword_classify(title: str, description: str) -> Classification:
    title_l, desc_l = title.lower(), description.lower()
    best, best_score = C.OTHER, 0
    for category, words in CATEGORY_KEYWORDS.items():
        score = sum(2 * _hits(w, title_l) + _hits(w, desc_l) for w in words)
        if score > best_score:
            best, best_score = category, score
    text = f"{title_l} {desc_l}"
    priority = Priority.MEDIUM
    for level, words in PRIORITY_KEYWORDS:
        if any(_hits(w, text) for w in words):
            priority = level
            break
    confidence = 0.3 if best_score == 0 else min(0.5 + 0.05 * best_score, 0.85)
    return Classification(
        category=best, department=CATEGORY_DEPARTMENT[best], priority=priority,
        confidence=confidence, keywords=extract_keywords(text),
        method=ClassificationMethod.KEYWORD, model="keyword-fallback",
        classified_at=now_utc())

# ---------------------------------------------------------------------------
# AI classification
# ---------------------------------------------------------------------------
def parse_ai_response(raw: str, title: str, description: str) -> Optional[Classification]:
    """Validate a model answer against the vocabularies; None when unusable."""
    match = re.search(r"\{.*\}", raw, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    categories = [c.value for c in Category]
    priorities = [p.value for p in Priority]
    departments = [d.value for d in Department]
    if data.get("category") not in categories or data.get("priority") not in priorities:
        return None
    category = Category(data["category"])
    department = data.get("department")
    if department is None:
        department = CATEGORY_DEPARTMENT[category].value
    elif department not in departments:
        return None
    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return None
    keywords = data.get("keywords")
    if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
        keywords = extract_keywords(f"{title} {description}")
    return Classification(
        category=category, department=Department(department), priority=Priority(data["priority"]),
        confidence=min(max(float(confidence), 0.0), 1.0),
        keywords=[k.lower() for k in keywords][:8],
        method=ClassificationMethod.AI, model=OPENAI_MODEL, classified_at=now_utc())

async def classify(title: str, description: str) -> Classification:
    """Best-effort classification. Never raises."""
    if openai_client is not None:
        prompt = (
            "Classify this municipal citizen complaint.\n\n"
            f'Title: "{truncate_text(title, 200)}"\n'
            f'Description: "{truncate_text(description, 2800)}"\n\n'
            "Return a JSON object with exactly these keys:\n"
            f'- "category": one of [{", ".join(c.value for c in Category)}]\n'
            f'- "department": one of [{", ".join(d.value for d in Department)}]\n'
            '- "priority": one of [low, medium, high, critical]\n'
            '- "confidence": a number between 0 and 1\n'
            '- "keywords": up to 8 short lower-case keywords\n\n'
            "Priority guide: critical=danger to life or property (fire, electrocution, collapse), "
            "high=essential service disrupted, medium=standard civic issue, low=suggestion or information."
        )
        try:
            result = await openai_chat([{"role": "user", "content": prompt}], json_mode=True)
            if result:
                parsed = parse_ai_response(result, title, description)
                if parsed is not None:
                    return parsed
                logger.warning("Classifier returned unusable output, using keyword fallback")
        except Exception as e:
            logger.error("Classification error: %s", e)
    return keyword_classify(title, description)
