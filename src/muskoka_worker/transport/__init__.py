"""Adapters for the external collaborators: object storage, subscription, result sink."""

from muskoka_worker.transport.sink import (
    FileResultSink,
    ResultSink,
    ResultSinkError,
    SnsResultSink,
)
from muskoka_worker.transport.storage import (
    LocalObjectStore,
    ObjectStore,
    ObjectStoreError,
    S3ObjectStore,
)
from muskoka_worker.transport.subscription import (
    DirectorySubscription,
    InboundMessage,
    SqsSubscription,
    Subscription,
    SubscriptionError,
)

__all__ = [
    "DirectorySubscription",
    "FileResultSink",
    "InboundMessage",
    "LocalObjectStore",
    "ObjectStore",
    "ObjectStoreError",
    "ResultSink",
    "ResultSinkError",
    "S3ObjectStore",
    "SnsResultSink",
    "SqsSubscription",
    "Subscription",
    "SubscriptionError",
]
