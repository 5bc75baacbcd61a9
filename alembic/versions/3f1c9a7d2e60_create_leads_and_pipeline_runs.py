"""Create leads and pipeline_runs tables

Revision ID: 3f1c9a7d2e60
Revises:
Create Date: 2026-10-16 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2e60'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('pipeline_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('request_id', sa.Text(), nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('client_ref', sa.Text(), nullable=True),
        sa.Column('category', sa.Text(), nullable=False),
        sa.Column('areas', sa.JSON(), nullable=True),
        sa.Column('score_min', sa.Integer(), nullable=False),
        sa.Column('max_per_area', sa.Integer(), nullable=False),
        sa.Column('verify_ads', sa.Boolean(), nullable=True),
        sa.Column('run_ai', sa.Boolean(), nullable=True),
        sa.Column('run_diagnostic', sa.Boolean(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('current_stage', sa.Text(), nullable=True),
        sa.Column('search_stats', sa.JSON(), nullable=True),
        sa.Column('area_stats', sa.JSON(), nullable=True),
        sa.Column('leads_found', sa.Integer(), nullable=True),
        sa.Column('leads_new', sa.Integer(), nullable=True),
        sa.Column('leads_duplicate', sa.Integer(), nullable=True),
        sa.Column('ads_verified', sa.Integer(), nullable=True),
        sa.Column('ai_analyzed', sa.Integer(), nullable=True),
        sa.Column('diagnosed', sa.Integer(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('stage_outputs', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id'),
    )
    op.create_index('ix_pipeline_runs_tenant_created', 'pipeline_runs', ['tenant_id', 'created_at'])

    op.create_table('leads',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Text(), nullable=False),
        sa.Column('place_id', sa.Text(), nullable=False),
        sa.Column('run_id', sa.Text(), nullable=True),
        sa.Column('client_ref', sa.Text(), nullable=True),
        # Discovery
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.Text(), nullable=True),
        sa.Column('state', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('whatsapp', sa.Text(), nullable=True),
        sa.Column('whatsapp_link', sa.Text(), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('instagram', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('maps_url', sa.Text(), nullable=True),
        sa.Column('rating', sa.Float(), nullable=True),
        sa.Column('total_reviews', sa.Integer(), nullable=True),
        sa.Column('types', sa.JSON(), nullable=True),
        sa.Column('opening_hours', sa.JSON(), nullable=True),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('classification', sa.Text(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=True),
        sa.Column('opportunities', sa.JSON(), nullable=True),
        sa.Column('has_website', sa.Boolean(), nullable=True),
        sa.Column('secure_site', sa.Boolean(), nullable=True),
        sa.Column('has_phone', sa.Boolean(), nullable=True),
        sa.Column('has_whatsapp', sa.Boolean(), nullable=True),
        sa.Column('business_category', sa.Text(), nullable=True),
        sa.Column('captured_at', sa.Text(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        # Ads / marketing signals
        sa.Column('runs_google_ads', sa.Boolean(), nullable=True),
        sa.Column('runs_facebook_ads', sa.Boolean(), nullable=True),
        sa.Column('uses_google_analytics', sa.Boolean(), nullable=True),
        sa.Column('uses_tag_manager', sa.Boolean(), nullable=True),
        sa.Column('uses_hotjar', sa.Boolean(), nullable=True),
        sa.Column('uses_rd_station', sa.Boolean(), nullable=True),
        sa.Column('runs_tiktok_ads', sa.Boolean(), nullable=True),
        sa.Column('runs_linkedin_ads', sa.Boolean(), nullable=True),
        sa.Column('ads_details', sa.JSON(), nullable=True),
        sa.Column('marketing_level', sa.Text(), nullable=False, server_default='NOT_VERIFIED'),
        sa.Column('ads_verified', sa.Boolean(), nullable=True),
        sa.Column('ads_verified_at', sa.DateTime(timezone=True), nullable=True),
        # AI analysis
        sa.Column('opportunity_level', sa.Text(), nullable=True),
        sa.Column('base_score', sa.Integer(), nullable=True),
        sa.Column('marketing_bonus', sa.Integer(), nullable=True),
        sa.Column('final_score', sa.Integer(), nullable=True),
        sa.Column('ai_classification', sa.Text(), nullable=True),
        sa.Column('ai_summary', sa.Text(), nullable=True),
        sa.Column('strengths', sa.JSON(), nullable=True),
        sa.Column('weaknesses', sa.JSON(), nullable=True),
        sa.Column('marketing_opportunities', sa.JSON(), nullable=True),
        sa.Column('sales_arguments', sa.JSON(), nullable=True),
        sa.Column('suggested_approach', sa.Text(), nullable=True),
        sa.Column('suggested_message', sa.Text(), nullable=True),
        sa.Column('ai_analysis', sa.JSON(), nullable=True),
        sa.Column('ai_analyzed_at', sa.DateTime(timezone=True), nullable=True),
        # Deep diagnostic
        sa.Column('diagnostic', sa.JSON(), nullable=True),
        sa.Column('diagnostic_temperature', sa.Text(), nullable=True),
        sa.Column('diagnostic_score', sa.Integer(), nullable=True),
        sa.Column('diagnosed_at', sa.DateTime(timezone=True), nullable=True),
        # Workflow
        sa.Column('status', sa.Text(), nullable=False, server_default='NEW'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'place_id', name='uq_lead_tenant_place'),
    )
    op.create_index('ix_leads_tenant_classification', 'leads', ['tenant_id', 'classification'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_leads_tenant_classification', table_name='leads')
    op.drop_table('leads')
    op.drop_index('ix_pipeline_runs_tenant_created', table_name='pipeline_runs')
    op.drop_table('pipeline_runs')
