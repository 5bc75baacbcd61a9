"""
Durable PipelineRun record — one row per pipeline invocation.
"""
from sqlalchemy import Column, Text, Integer, Boolean, DateTime, JSON, Index
from sqlalchemy.sql import func

from prospector.database import Base


class DbPipelineRun(Base):
    __tablename__ = 'pipeline_runs'

    id = Column(Text, primary_key=True)
    request_id = Column(Text, nullable=False, unique=True)
    tenant_id = Column(Text, nullable=False)
    client_ref = Column(Text, nullable=True)
    category = Column(Text, nullable=False)
    areas = Column(JSON, default=list)
    score_min = Column(Integer, nullable=False)
    max_per_area = Column(Integer, nullable=False)
    verify_ads = Column(Boolean, default=True)
    run_ai = Column(Boolean, default=True)
    run_diagnostic = Column(Boolean, default=False)
    status = Column(Text, nullable=False, default='pending')
    current_stage = Column(Text, default='')
    search_stats = Column(JSON, nullable=True)
    area_stats = Column(JSON, nullable=True)
    leads_found = Column(Integer, default=0)
    leads_new = Column(Integer, default=0)
    leads_duplicate = Column(Integer, default=0)
    ads_verified = Column(Integer, default=0)
    ai_analyzed = Column(Integer, default=0)
    diagnosed = Column(Integer, default=0)
    errors = Column(JSON, default=list)
    error_message = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    stage_outputs = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_pipeline_runs_tenant_created', 'tenant_id', 'created_at'),
    )
