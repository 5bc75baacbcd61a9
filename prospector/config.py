"""
Centralized configuration — env vars and shared vocabularies.

Pipeline tunables (quota limits, delays, timeouts) live in
prospector/pipeline/limits.yaml, see limits_config.py.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── n8n automation webhooks ───────────────────────────────────────────────────
N8N_WEBHOOK_BASE_URL = os.getenv('N8N_WEBHOOK_BASE_URL', 'http://localhost:5678').rstrip('/')

SEARCH_WEBHOOK_URL = os.getenv('N8N_SEARCH_WEBHOOK_URL', f'{N8N_WEBHOOK_BASE_URL}/webhook/lead-sniper')
ADS_WEBHOOK_URL = os.getenv('N8N_ADS_WEBHOOK_URL', f'{N8N_WEBHOOK_BASE_URL}/webhook/verificar-ads')
AI_WEBHOOK_URL = os.getenv('N8N_AI_WEBHOOK_URL', f'{N8N_WEBHOOK_BASE_URL}/webhook/analisar-lead')
DIAGNOSTIC_WEBHOOK_URL = os.getenv('N8N_DIAGNOSTIC_WEBHOOK_URL', f'{N8N_WEBHOOK_BASE_URL}/webhook/diagnostico')

# ── Slack notifications ──────────────────────────────────────────────────────
SLACK_WEBHOOK_URL = os.getenv('SLACK_WEBHOOK_URL')

# ── Tenancy ──────────────────────────────────────────────────────────────────
# Auth lives outside this service; callers pass X-Tenant-Id.
DEFAULT_TENANT_ID = os.getenv('DEFAULT_TENANT_ID', 'default')

# ── Background jobs ──────────────────────────────────────────────────────────
PIPELINE_JOB_TIMEOUT = int(os.getenv('PIPELINE_JOB_TIMEOUT', 3600))

# ── Pipeline stage definitions ────────────────────────────────────────────────
PIPELINE_STAGES = [
    'search',
    'ads_verification',
    'ai_analysis',
    'deep_diagnostic',
]

# Request flag that enables each optional stage (search always runs)
STAGE_FLAGS = {
    'ads_verification': 'verify_ads',
    'ai_analysis': 'run_ai',
    'deep_diagnostic': 'run_diagnostic',
}

# ── Run status values ─────────────────────────────────────────────────────────
RUN_STATUSES = [
    'pending',
    'processing',
    'completed',
    'failed',
]

# ── Lead vocabularies ────────────────────────────────────────────────────────
CLASSIFICATIONS = ['HOT', 'WARM', 'COOL', 'COLD']

MARKETING_LEVELS = ['NOT_VERIFIED', 'NONE', 'BASIC', 'ADVANCED']

OPPORTUNITY_LEVELS = ['MAXIMUM', 'HIGH', 'MEDIUM', 'LOW']

LEAD_STATUSES = ['NEW', 'CONTACTED', 'RESPONDED', 'INTERESTED', 'CLOSED', 'LOST']
