from .audit import AuditRecord, AuditSink, InMemoryAuditSink, LoggingAuditSink

__all__ = ["AuditRecord", "AuditSink", "InMemoryAuditSink", "LoggingAuditSink"]
