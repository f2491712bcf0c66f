"""Domain Layer: errors, value objects, state records, events and ports.

Has no dependency on infrastructure; everything here is importable from tests
without any third-party library.
"""
