"""Per-tool output normalizers.

Each module handles one tool family and shares nothing with its neighbours
beyond the helpers in ``common``.
"""
