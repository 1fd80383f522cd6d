"""Lesson schedule, attendance and grade ledger backend."""
