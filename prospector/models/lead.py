"""
Lead model — one row per discovered business, deduplicated by (tenant_id, place_id).

Rows are created by the search stage upsert and then merged field-by-field by
the ads, AI and diagnostic stages. Workflow `status` is only ever changed by
users, never by the pipeline.
"""
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, DateTime, JSON, UniqueConstraint, Index,
)
from sqlalchemy.sql import func

from prospector.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Text, nullable=False)
    place_id = Column(Text, nullable=False)           # external place identifier
    run_id = Column(Text, nullable=True)              # run that last discovered it
    client_ref = Column(Text, nullable=True)

    # ── Discovery ──
    name = Column(Text, default='')
    address = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    state = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    whatsapp = Column(Text, nullable=True)
    whatsapp_link = Column(Text, nullable=True)
    website = Column(Text, nullable=True)
    instagram = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    maps_url = Column(Text, nullable=True)
    rating = Column(Float, nullable=True)
    total_reviews = Column(Integer, default=0)
    types = Column(JSON, default=list)
    opening_hours = Column(JSON, default=list)
    score = Column(Integer, default=0)                # heuristic 0-100
    classification = Column(Text, nullable=True)      # HOT/WARM/COOL/COLD
    priority = Column(Integer, nullable=True)
    opportunities = Column(JSON, default=list)
    has_website = Column(Boolean, default=False)
    secure_site = Column(Boolean, default=False)
    has_phone = Column(Boolean, default=False)
    has_whatsapp = Column(Boolean, default=False)
    business_category = Column(Text, nullable=True)
    captured_at = Column(Text, nullable=True)
    source = Column(Text, default='google_places_api')
    notes = Column(Text, nullable=True)

    # ── Ads / marketing signals ──
    runs_google_ads = Column(Boolean, default=False)
    runs_facebook_ads = Column(Boolean, default=False)
    uses_google_analytics = Column(Boolean, default=False)
    uses_tag_manager = Column(Boolean, default=False)
    uses_hotjar = Column(Boolean, default=False)
    uses_rd_station = Column(Boolean, default=False)
    runs_tiktok_ads = Column(Boolean, default=False)
    runs_linkedin_ads = Column(Boolean, default=False)
    ads_details = Column(JSON, default=list)
    marketing_level = Column(Text, nullable=False, default='NOT_VERIFIED')
    ads_verified = Column(Boolean, default=False)
    ads_verified_at = Column(DateTime(timezone=True), nullable=True)

    # ── AI analysis ──
    opportunity_level = Column(Text, nullable=True)
    base_score = Column(Integer, nullable=True)
    marketing_bonus = Column(Integer, nullable=True)
    final_score = Column(Integer, nullable=True)
    ai_classification = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)
    strengths = Column(JSON(none_as_null=True), nullable=True)
    weaknesses = Column(JSON(none_as_null=True), nullable=True)
    marketing_opportunities = Column(JSON(none_as_null=True), nullable=True)
    sales_arguments = Column(JSON(none_as_null=True), nullable=True)
    suggested_approach = Column(Text, nullable=True)
    suggested_message = Column(Text, nullable=True)
    ai_analysis = Column(JSON(none_as_null=True), nullable=True)
    ai_analyzed_at = Column(DateTime(timezone=True), nullable=True)

    # ── Deep diagnostic ──
    diagnostic = Column(JSON(none_as_null=True), nullable=True)
    diagnostic_temperature = Column(Text, nullable=True)
    diagnostic_score = Column(Integer, nullable=True)
    diagnosed_at = Column(DateTime(timezone=True), nullable=True)

    # ── Workflow ──
    status = Column(Text, nullable=False, default='NEW')

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('tenant_id', 'place_id', name='uq_lead_tenant_place'),
        Index('ix_leads_tenant_classification', 'tenant_id', 'classification'),
    )

    def to_dict(self) -> dict:
        """Public shape returned by the API."""
        def _iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'place_id': self.place_id,
            'run_id': self.run_id,
            'client_ref': self.client_ref,
            'name': self.name,
            'address': self.address,
            'city': self.city,
            'state': self.state,
            'phone': self.phone,
            'whatsapp': self.whatsapp,
            'whatsapp_link': self.whatsapp_link,
            'website': self.website,
            'instagram': self.instagram,
            'maps_url': self.maps_url,
            'rating': self.rating,
            'total_reviews': self.total_reviews or 0,
            'types': self.types or [],
            'score': self.score or 0,
            'classification': self.classification,
            'priority': self.priority,
            'opportunities': self.opportunities or [],
            'has_website': bool(self.has_website),
            'secure_site': bool(self.secure_site),
            'has_whatsapp': bool(self.has_whatsapp),
            'business_category': self.business_category,
            'marketing': {
                'level': self.marketing_level or 'NOT_VERIFIED',
                'verified': bool(self.ads_verified),
                'verified_at': _iso(self.ads_verified_at),
                'google_ads': bool(self.runs_google_ads),
                'facebook_ads': bool(self.runs_facebook_ads),
                'google_analytics': bool(self.uses_google_analytics),
                'tag_manager': bool(self.uses_tag_manager),
                'hotjar': bool(self.uses_hotjar),
                'rd_station': bool(self.uses_rd_station),
                'tiktok_ads': bool(self.runs_tiktok_ads),
                'linkedin_ads': bool(self.runs_linkedin_ads),
                'details': self.ads_details or [],
            },
            'opportunity_level': self.opportunity_level,
            'base_score': self.base_score,
            'marketing_bonus': self.marketing_bonus,
            'final_score': self.final_score,
            'ai_classification': self.ai_classification,
            'ai_summary': self.ai_summary,
            'suggested_message': self.suggested_message,
            'ai_analyzed_at': _iso(self.ai_analyzed_at),
            'diagnostic_temperature': self.diagnostic_temperature,
            'diagnostic_score': self.diagnostic_score,
            'has_diagnostic': self.diagnostic is not None,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
