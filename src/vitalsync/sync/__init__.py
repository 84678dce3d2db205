"""Sync infrastructure for VitalSync.

Modules:
    service — Window sync state machine with bounded concurrent fetches
    outbox  — Outbound payloads, last-write-wins outbox, push client
"""
