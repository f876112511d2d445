"""CRM domain operations that emit webhook events."""

from leadhub.crm.service import CRMService, get_crm_service, set_crm_service

__all__ = ["CRMService", "get_crm_service", "set_crm_service"]
