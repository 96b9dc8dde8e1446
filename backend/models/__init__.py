"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Models Package                                               ║
║                                                                              ║
║  Exports all request models for easy import                                  ║
║  from models import LeadCreate, DealCreate, AutomationCreate, etc.           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .auth import (
    VALID_ROLES,
    UserLogin,
    SignupRequest,
    UserCreate,
    UserUpdate,
)

from .company import (
    COMPANY_STATUSES,
    API_KEY_PROVIDERS,
    CompanyUpdate,
    ApiKeysUpdate,
    PlanAssignment,
    ByokUpdate,
    BonusCredits,
)

from .lead import (
    LEAD_STATUSES,
    is_valid_email_format,
    normalize_lead_status,
    LeadCreate,
    LeadUpdate,
    LeadStatusUpdate,
)

from .deal import (
    DEAL_STATUSES,
    CLOSED_DEAL_STATUSES,
    DEFAULT_PROBABILITIES,
    DealCreate,
    DealUpdate,
)

from .activity import (
    ACTIVITY_TYPES,
    MANUAL_ACTIVITY_TYPES,
    ActivityCreate,
)

from .automation import (
    AUTOMATION_STATUSES,
    STATE_STATUSES,
    CONTACT_STATUSES,
    EMAIL_PROVIDERS,
    AutomationStep,
    DeliveryConfig,
    AutomationCreate,
    AutomationUpdate,
    EmailListCreate,
    EmailListLink,
    EmailContactCreate,
    EmailContactUpdate,
)

from .campaign import (
    EmailContentRequest,
    UnifiedCampaignRequest,
    CostEstimateRequest,
    SendEmailRequest,
    SendSmsRequest,
    BulkSmsRequest,
    SendWhatsAppRequest,
)

from .template import (
    TemplateCreate,
    TemplateUse,
    TemplateRatingCreate,
)

from .digital_card import (
    CARD_STATUSES,
    DigitalCardCreate,
    DigitalCardUpdate,
    CardStatusUpdate,
    CardLeadSubmission,
)
