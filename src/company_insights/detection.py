"""
Detects the "company not found" outcome in generated company details
"""

import re
from dataclasses import dataclass
from enum import Enum

NOT_FOUND_SENTINEL = "COMPANY_NOT_FOUND:"

SENTINEL_PATTERN = re.compile(re.escape(NOT_FOUND_SENTINEL), re.IGNORECASE)

NOT_FOUND_PHRASES = (
    "not available",
    "no information found",
    "unable to find",
    "could not locate",
    "no such company",
    "please verify",
    "no reliable information",
    "cannot find basic information",
)

PHRASE_PATTERN = re.compile("|".join(re.escape(phrase) for phrase in NOT_FOUND_PHRASES), re.IGNORECASE)


class NotFoundVerdict(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class NotFoundPolicy:
    """
    The sentinel always wins. Phrase matching only applies to pipelines without a
    search stage, and never once a real source was found. Pipelines that search
    rely on the sentinel alone, unless phrases_in_search_pipelines is turned on,
    in which case phrases also count when the search came back empty.
    """
    phrases_in_search_pipelines: bool = False

    def evaluate(self, text: str, has_search_evidence: bool, search_stage: bool = False) -> NotFoundVerdict:
        if SENTINEL_PATTERN.search(text or ""):
            return NotFoundVerdict.NOT_FOUND

        phrases_apply = not has_search_evidence and (not search_stage or self.phrases_in_search_pipelines)
        if phrases_apply and PHRASE_PATTERN.search(text or ""):
            return NotFoundVerdict.NOT_FOUND

        return NotFoundVerdict.FOUND if has_search_evidence else NotFoundVerdict.INCONCLUSIVE


DEFAULT_POLICY = NotFoundPolicy()


def is_subject_not_found(text: str, has_search_evidence: bool, search_stage: bool = False,
                         policy: NotFoundPolicy = DEFAULT_POLICY) -> bool:
    return policy.evaluate(text, has_search_evidence, search_stage) is NotFoundVerdict.NOT_FOUND
