"""Default keyword taxonomy used for intake pre-filtering and category tagging."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping

KEYWORD_CATEGORIES: Dict[str, List[str]] = {
    "cybersecurity": [
        "cyber", "hack", "hacker", "breach", "ransomware", "malware", "spyware", "trojan",
        "botnet", "backdoor", "exploit", "phishing", "ddos", "sql injection", "zero-day",
        "brute force", "vulnerability", "cve-", "security flaw", "credential", "password leak",
        "data breach", "stolen data", "exfiltration", "threat actor", "cybercrime",
        "cyber attack", "intrusion", "incident response",
    ],
    "regulatory": [
        "regulatory", "regulation", "compliance", "mandate", "directive", "policy",
        "legislation", "statute", "ruling", "decree", "finra", "cbn", "central bank",
        "securities commission", "federal reserve", "basel", "gdpr", "fine", "penalty",
        "sanction", "enforcement action", "consent order", "investigation", "audit",
        "supervisory", "guideline", "disclosure",
    ],
    "market": [
        "market", "volatility", "downturn", "crash", "bubble", "bear market", "economic",
        "economy", "gdp", "inflation", "recession", "slowdown", "interest rate", "yield",
        "liquidity", "credit", "debt", "currency", "exchange rate", "forex", "commodity",
        "oil price", "default", "bankruptcy", "insolvency", "bailout", "crisis",
        "systemic risk", "contagion", "trading", "stock", "equity", "bond", "securities",
        "investment",
    ],
    "operational": [
        "outage", "downtime", "system failure", "service disruption", "offline", "blackout",
        "power failure", "infrastructure failure", "processing error", "settlement failure",
        "reconciliation", "fraud", "misconduct", "rogue trader", "unauthorized",
        "insider threat", "human error",
    ],
    "strategic": [
        "competitor", "competition", "market share", "new entrant", "strategy", "strategic",
        "business model", "disruption", "innovation", "merger", "acquisition", "reputation",
        "brand", "public perception", "scandal", "controversy", "backlash", "boycott",
    ],
}

DEFAULT_RISK_KEYWORDS: List[str] = [
    "risk", "threat", "vulnerability", "breach", "attack", "fraud",
    "compliance", "regulation", "penalty", "fine", "sanction",
    "cybersecurity", "data breach", "ransomware", "phishing",
    "operational", "disruption", "outage", "failure",
    "financial loss", "market volatility", "credit risk",
    "liquidity", "default", "bankruptcy",
    "environmental", "climate", "esg", "sustainability",
    "reputation", "scandal", "investigation",
    "audit", "control", "governance",
]

# Ordered: first match wins.
_EVENT_CATEGORY_RULES = [
    ("cybersecurity", re.compile(r"cyber|hack|breach|malware|ransomware|phishing", re.I)),
    ("regulatory", re.compile(r"regulat|compliance|\bsec\b|\bcbn\b|penalty|fine", re.I)),
    ("market", re.compile(r"market|trading|stock|bond|forex|financial", re.I)),
    ("environmental", re.compile(r"environment|climate|\besg\b|sustainab|carbon", re.I)),
    ("operational", re.compile(r"operation|system|outage|failure|disruption", re.I)),
]


def categorize_event(title: str, summary: str) -> str:
    """Derive the event category tag from content rules."""
    text = f"{title} {summary}"
    for category, pattern in _EVENT_CATEGORY_RULES:
        if pattern.search(text):
            return category
    return "other"


def default_keyword_set() -> List[str]:
    return build_keyword_set(KEYWORD_CATEGORIES, extra=DEFAULT_RISK_KEYWORDS)


def build_keyword_set(grouped: Mapping[str, Iterable[str]], *, extra: Iterable[str] = ()) -> List[str]:
    """Flatten grouped keywords into a lower-cased, order-preserving unique list."""
    seen: Dict[str, None] = {}
    for keywords in grouped.values():
        for keyword in keywords:
            normalized = keyword.strip().lower()
            if normalized:
                seen.setdefault(normalized, None)
    for keyword in extra:
        normalized = keyword.strip().lower()
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)
