"""Static domain vocabulary for fund-management knowledge bases.

# ─── PURPOSE ───────────────────────────────────────────────────────────
#
# The semantic embedding view of a chunk prefixes the chunk text with the
# domain terms it mentions ("Key concepts: fund, nav, rollforward"), so two
# chunks about the same fund-operations topic land closer together even
# when their wording differs.  The query classifier uses the same list to
# recognise exact domain terms worth matching lexically.
#
# Matching is whole-word and case-insensitive.  Multi-word terms
# ("fund creation") are matched as phrases.  Every function here is pure.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import re
from collections.abc import Iterable

# ═════════════════════════════════════════════════════════════════════════
# 1. CORE VOCABULARY
# ═════════════════════════════════════════════════════════════════════════

FUND_MANAGEMENT_KEYWORDS: tuple[str, ...] = (
    # Instruments and vehicles
    "fund", "investment", "portfolio", "asset", "equity", "bond", "derivative",
    "hedge", "mutual", "etf", "reit", "security", "securities",
    # Performance and risk
    "management", "return", "risk", "allocation", "diversification",
    "performance", "benchmark", "yield", "volatility",
    # Accounting and operations
    "nav", "valuation", "rollforward", "capital", "expense", "fee",
    "accrual", "reconciliation", "distribution", "subscription", "redemption",
    # Oversight
    "compliance", "audit", "regulation", "reporting",
    # Multi-word phrases
    "fund creation", "net asset value", "capital call",
)


# ═════════════════════════════════════════════════════════════════════════
# 2. HELPERS
# ═════════════════════════════════════════════════════════════════════════

def _pattern(term: str) -> re.Pattern[str]:
    words = [re.escape(w) for w in term.lower().split()]
    return re.compile(r"\b" + r"\s+".join(words) + r"\b")


_COMPILED: dict[str, re.Pattern[str]] = {t: _pattern(t) for t in FUND_MANAGEMENT_KEYWORDS}


def find_domain_keywords(text: str, vocabulary: Iterable[str] | None = None) -> list[str]:
    """Return the vocabulary terms that occur in *text*, in vocabulary order.

    Parameters
    ----------
    text:
        Text to scan.
    vocabulary:
        Terms to look for.  Defaults to :data:`FUND_MANAGEMENT_KEYWORDS`.
    """
    lowered = text.lower()
    terms = FUND_MANAGEMENT_KEYWORDS if vocabulary is None else tuple(vocabulary)
    found: list[str] = []
    for term in terms:
        pattern = _COMPILED.get(term) or _pattern(term)
        if pattern.search(lowered):
            found.append(term)
    return found
