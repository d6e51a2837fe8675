"""
Client-side delivery: transcript reconciliation, cold-start cache and the
push + poll delivery client.
"""
from .reconciler import merge_messages, Transcript, TranscriptReconciler
from .cache import TranscriptCache
from .delivery_client import ChatDeliveryClient, DeliveryStatus

__all__ = [
    'merge_messages',
    'Transcript',
    'TranscriptReconciler',
    'TranscriptCache',
    'ChatDeliveryClient',
    'DeliveryStatus',
]
