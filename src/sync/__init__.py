"""
Remote data synchronization.

The Data-Sync Coordinator pulls every remote table into the unified cache;
the Authentication-Triggered Sync runs it, together with resource
refreshers, once services are ready after sign-in.
"""

from .remote_provider import RemoteDataProvider, RestDataProvider, StaticDataProvider
from .data_sync import DataSyncCoordinator, SyncResult
from .company_normalization import CompanyNormalizationService
from .auth_sync import (
    SyncStage,
    AuthenticationSyncResult,
    ResourceRefresher,
    AttendeeProfileRefresher,
    AuthenticationTriggeredSync
)

__all__ = [
    'RemoteDataProvider',
    'RestDataProvider',
    'StaticDataProvider',
    'DataSyncCoordinator',
    'SyncResult',
    'CompanyNormalizationService',
    'SyncStage',
    'AuthenticationSyncResult',
    'ResourceRefresher',
    'AttendeeProfileRefresher',
    'AuthenticationTriggeredSync'
]
