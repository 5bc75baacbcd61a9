"""
Niche catalog — local keyword detection used to hint the diagnostic workflow.

Keywords are matched as lowercase substrings against the business's free
text. Catalog order matters: the first niche with any matching keyword wins.
Keywords are Portuguese because the searched businesses are Brazilian.
"""
from typing import Dict, Optional

DEFAULT_NICHE = 'other'

NICHE_CATALOG: Dict[str, Dict] = {
    'fitness': {
        'name': 'Gym / Fitness',
        'keywords': ['academia', 'fitness', 'musculação', 'crossfit', 'pilates', 'personal'],
        'pain_points': ['member retention', 'seasonality', 'competition', 'loyalty'],
        'metrics': ['retention rate', 'average ticket', 'LTV', 'CAC'],
        'templates': {
            'opening': 'Your gym has great potential to grow...',
            'follow_up': 'Did you get a chance to look at the proposal?',
            'closing': 'Shall we start the digital transformation of your gym?',
        },
    },
    'restaurant': {
        'name': 'Restaurant / Food',
        'keywords': ['restaurante', 'pizzaria', 'hamburgueria', 'delivery', 'lanchonete', 'bar'],
        'pain_points': ['delivery', 'visibility', 'loyalty', 'negative reviews'],
        'metrics': ['average ticket', 'orders per day', 'repeat rate', 'average rating'],
        'templates': {
            'opening': 'Your restaurant could be attracting many more customers...',
            'follow_up': 'Have you considered how paid traffic could fill your tables?',
            'closing': 'Ready to see your restaurant full every day?',
        },
    },
    'medical_clinic': {
        'name': 'Medical Clinic / Health',
        'keywords': ['clínica', 'médico', 'dentista', 'odonto', 'dermatologia', 'estética'],
        'pain_points': ['empty schedule', 'no-shows', 'patient acquisition', 'authority'],
        'metrics': ['appointments per month', 'no-show rate', 'average ticket', 'returning patients'],
        'templates': {
            'opening': 'Your clinic deserves a schedule that is always full...',
            'follow_up': 'Imagine patients booking every single day?',
            'closing': 'Shall we fill your schedule with qualified patients?',
        },
    },
    'ecommerce': {
        'name': 'E-commerce / Online store',
        'keywords': ['loja virtual', 'ecommerce', 'e-commerce', 'shopify', 'woocommerce'],
        'pain_points': ['abandoned carts', 'qualified traffic', 'conversion', 'ROAS'],
        'metrics': ['conversion rate', 'ROAS', 'average ticket', 'CAC'],
        'templates': {
            'opening': 'I found great opportunities to scale your sales...',
            'follow_up': 'Ready to multiply your revenue?',
            'closing': 'Shall we put your store to work 24/7?',
        },
    },
    'real_estate': {
        'name': 'Real estate agency / Broker',
        'keywords': ['imobiliária', 'corretor', 'imóveis', 'apartamento', 'casa', 'aluguel'],
        'pain_points': ['qualified leads', 'long sales cycle', 'competition'],
        'metrics': ['leads per month', 'conversion rate', 'average time to sell', 'GSV'],
        'templates': {
            'opening': 'Your properties deserve qualified buyers...',
            'follow_up': 'Imagine a line of interested buyers?',
            'closing': 'Shall we attract buyers ready to close?',
        },
    },
    'law_firm': {
        'name': 'Law firm / Legal',
        'keywords': ['advogado', 'escritório', 'advocacia', 'jurídico', 'direito'],
        'pain_points': ['ethical client acquisition', 'authority', 'differentiation', 'specialization'],
        'metrics': ['consultations per month', 'conversion rate', 'average ticket', 'retention'],
        'templates': {
            'opening': 'Your expertise deserves to be known by more people...',
            'follow_up': 'Ready to become the reference in your field?',
            'closing': 'Shall we position you as an authority?',
        },
    },
    'beauty_salon': {
        'name': 'Beauty salon / Aesthetics',
        'keywords': ['salão', 'beleza', 'cabelo', 'manicure', 'estética', 'barbearia'],
        'pain_points': ['inconsistent schedule', 'loyalty', 'low average ticket'],
        'metrics': ['bookings per week', 'average ticket', 'return rate', 'NPS'],
        'templates': {
            'opening': 'Your salon has room for many more clients...',
            'follow_up': 'Imagine a fully booked schedule every week?',
            'closing': 'Shall we make your salon the local reference?',
        },
    },
    'pet_shop': {
        'name': 'Pet shop / Veterinary',
        'keywords': ['pet shop', 'petshop', 'veterinária', 'banho e tosa', 'ração'],
        'pain_points': ['owner loyalty', 'recurring services', 'differentiation'],
        'metrics': ['active customers', 'purchase frequency', 'average ticket', 'LTV'],
        'templates': {
            'opening': 'Pets in the area deserve to know your business...',
            'follow_up': 'Ready to win over more pet owners?',
            'closing': 'Shall we make your pet shop take off?',
        },
    },
}

# Provider category → niche, checked in order against the lowercased category
_CATEGORY_HINTS = [
    ('beauty_salon', ('salão', 'beleza', 'estética')),
    ('fitness', ('academia', 'fitness')),
    ('restaurant', ('restaurante', 'pizzaria')),
    ('medical_clinic', ('clínica', 'médic')),
    ('pet_shop', ('pet', 'veterin')),
]


def detect_niche(text: Optional[str]) -> str:
    """First catalog niche whose keyword appears in `text`, else 'other'."""
    lowered = (text or '').lower()
    for niche, info in NICHE_CATALOG.items():
        if any(keyword in lowered for keyword in info['keywords']):
            return niche
    return DEFAULT_NICHE


def niche_info(niche: str) -> Optional[Dict]:
    return NICHE_CATALOG.get(niche)


def niche_from_category(category: Optional[str]) -> str:
    """Map the diagnostic provider's business category onto a catalog niche."""
    lowered = (category or '').lower()
    for niche, hints in _CATEGORY_HINTS:
        if any(hint in lowered for hint in hints):
            return niche
    return DEFAULT_NICHE
