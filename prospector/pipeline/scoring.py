"""
Local heuristic scoring — fallback when the search workflow returns a lead
without a score or classification.

Points (capped at 100):
    no website                     +30   NO_WEBSITE
    website without HTTPS          +25   INSECURE_SITE
    fewer than 50 reviews          +20   FEW_REVIEWS
    no phone and no WhatsApp       +15   NO_CONTACT
    rating missing or below 4.0    +10   LOW_RATING
    no opening hours               +5    NO_HOURS
    marketing level NONE           +20   NO_MARKETING
    marketing level BASIC          +10   BASIC_MARKETING
"""
from typing import Dict, Tuple

# (min score, classification, priority), checked top-down
CLASSIFICATION_BANDS = [
    (80, 'HOT', 1),
    (60, 'WARM', 2),
    (40, 'COOL', 3),
    (0, 'COLD', 4),
]


def classify_score(score: int) -> Tuple[str, int]:
    """Classification and priority for a 0-100 heuristic score."""
    for floor, classification, priority in CLASSIFICATION_BANDS:
        if score >= floor:
            return classification, priority
    return 'COLD', 4


def local_score(
    has_website: bool = False,
    secure_site: bool = False,
    rating: float = None,
    total_reviews: int = None,
    has_phone: bool = False,
    has_whatsapp: bool = False,
    has_hours: bool = False,
    marketing_level: str = None,
) -> Dict:
    score = 0
    opportunities = []

    if not has_website:
        score += 30
        opportunities.append('NO_WEBSITE')
    elif not secure_site:
        score += 25
        opportunities.append('INSECURE_SITE')

    if not total_reviews or total_reviews < 50:
        score += 20
        opportunities.append('FEW_REVIEWS')

    if not has_phone and not has_whatsapp:
        score += 15
        opportunities.append('NO_CONTACT')

    if not rating or rating < 4.0:
        score += 10
        opportunities.append('LOW_RATING')

    if not has_hours:
        score += 5
        opportunities.append('NO_HOURS')

    if marketing_level == 'NONE':
        score += 20
        opportunities.append('NO_MARKETING')
    elif marketing_level == 'BASIC':
        score += 10
        opportunities.append('BASIC_MARKETING')

    score = min(score, 100)
    classification, priority = classify_score(score)
    return {
        'score': score,
        'classification': classification,
        'priority': priority,
        'opportunities': opportunities,
    }


def rescore_lead(lead) -> Dict:
    """local_score() from a stored Lead row."""
    return local_score(
        has_website=bool(lead.has_website),
        secure_site=bool(lead.secure_site),
        rating=lead.rating,
        total_reviews=lead.total_reviews,
        has_phone=bool(lead.has_phone),
        has_whatsapp=bool(lead.has_whatsapp),
        has_hours=bool(lead.opening_hours),
        marketing_level=lead.marketing_level,
    )
