"""Client side of reelsync: query cache, invalidation, transport, mutations.

Build a single SyncContext per process and activate it once the user is
signed in.
"""

from reelsync.client.cache import FreshnessPolicy, QueryCache, QueryResult, Subscription
from reelsync.client.context import AuthSession, SyncContext
from reelsync.client.http import MutationApi, MutationRequest, QueryApi
from reelsync.client.keys import (
    ExactKey,
    KeyMatcher,
    KeyPredicate,
    KeyPrefix,
    QueryParams,
    key_path,
    make_key,
)
from reelsync.client.mutations import MutationResult, OptimisticMutator, OptimisticUpdate
from reelsync.client.reconcile import Reconciler
from reelsync.client.router import INVALIDATION_RULES, InvalidationRouter
from reelsync.client.transport import TransportChannel

__all__ = [
    "AuthSession",
    "ExactKey",
    "FreshnessPolicy",
    "INVALIDATION_RULES",
    "InvalidationRouter",
    "KeyMatcher",
    "KeyPredicate",
    "KeyPrefix",
    "MutationApi",
    "MutationRequest",
    "MutationResult",
    "OptimisticMutator",
    "OptimisticUpdate",
    "QueryApi",
    "QueryCache",
    "QueryParams",
    "QueryResult",
    "Reconciler",
    "Subscription",
    "SyncContext",
    "TransportChannel",
    "key_path",
    "make_key",
]
